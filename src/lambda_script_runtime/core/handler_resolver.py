"""
Handler Resolver

Turns the handler string into a HandlerDescriptor.

Grammar:
- Module::<module-name>::<function-name>   MODULE kind
- <file>.<ext>::<function-name>            FUNCTION kind
- <file>.<ext>                             SCRIPT kind

Design principles:
- Resolution happens once, at cold start
- The descriptor is immutable; nothing re-resolves mid-process
- Files are located relative to the task root
- Modules are located on the module search path, then the normal import path
- Every failure is a distinct ResolutionError subclass
- Loading handler code wraps its errors with context (HandlerLoadError)
"""

import importlib
import importlib.machinery
import importlib.util
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePath
from types import ModuleType
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

MODULE_PREFIX = 'Module'
SEPARATOR = '::'


# Custom exceptions
class ResolutionError(Exception):
    """Base exception for handler resolution errors"""
    pass


class MalformedHandlerError(ResolutionError):
    """Raised when the handler string matches no grammar branch"""
    pass


class HandlerFileNotFoundError(ResolutionError):
    """Raised when the handler file doesn't exist"""
    pass


class HandlerModuleNotFoundError(ResolutionError):
    """Raised when the handler module can't be found on the search path"""
    pass


class HandlerFunctionNotFoundError(ResolutionError):
    """Raised when a handler file doesn't define the handler function"""
    pass


class HandlerFunctionNotExportedError(ResolutionError):
    """Raised when a handler module doesn't export the handler function"""
    pass


class InitError(Exception):
    """Base exception for handler initialization errors"""
    pass


class HandlerLoadError(InitError):
    """Raised when handler code can't be loaded (syntax error, import error)"""
    pass


class HandlerKind(str, Enum):
    """How the handler is dispatched."""
    SCRIPT = "script"
    FUNCTION = "function"
    MODULE = "module"


@dataclass(frozen=True)
class HandlerDescriptor:
    """
    Resolved handler.

    Attributes:
        kind: SCRIPT, FUNCTION or MODULE
        target: Absolute file path (SCRIPT, FUNCTION) or module name (MODULE)
        function_name: Function to call (FUNCTION, MODULE only)
        spec: The handler string this was resolved from
    """
    kind: HandlerKind
    target: str
    function_name: Optional[str] = None
    spec: str = ""

    def __post_init__(self):
        if self.kind == HandlerKind.SCRIPT and self.function_name is not None:
            raise ValueError("Script handlers have no function name")
        if self.kind != HandlerKind.SCRIPT and not self.function_name:
            raise ValueError(f"{self.kind.value} handlers require a function name")

    @property
    def path(self) -> Optional[Path]:
        """Handler file (None for MODULE handlers)"""
        if self.kind == HandlerKind.MODULE:
            return None
        return Path(self.target)


def parse_handler_spec(spec: Optional[str]) -> Tuple[HandlerKind, str, Optional[str]]:
    """
    Split a handler string into (kind, target, function_name).

    Only checks the grammar; nothing is looked up on disk.

    Raises:
        MalformedHandlerError: If the string matches no grammar branch
    """
    text = (spec or '').strip()
    if not text:
        raise MalformedHandlerError("Handler is not set")

    parts = text.split(SEPARATOR)

    if parts[0] == MODULE_PREFIX:
        if len(parts) != 3 or not parts[1] or not _is_name(parts[2]):
            raise MalformedHandlerError(
                f"Invalid handler '{text}': expected "
                f"'{MODULE_PREFIX}{SEPARATOR}<module>{SEPARATOR}<function>'"
            )
        if not all(segment.isidentifier() for segment in parts[1].split('.')):
            raise MalformedHandlerError(f"Invalid module name in handler '{text}': {parts[1]}")
        return HandlerKind.MODULE, parts[1], parts[2]

    if len(parts) == 2:
        file_name, function_name = parts
        if not _is_file_name(file_name) or not _is_name(function_name):
            raise MalformedHandlerError(
                f"Invalid handler '{text}': expected '<file>.<ext>{SEPARATOR}<function>'"
            )
        return HandlerKind.FUNCTION, file_name, function_name

    if len(parts) == 1:
        if not _is_file_name(text):
            raise MalformedHandlerError(f"Invalid handler '{text}': expected '<file>.<ext>'")
        return HandlerKind.SCRIPT, text, None

    raise MalformedHandlerError(f"Invalid handler '{text}': too many '{SEPARATOR}' separators")


def resolve(
    spec: Optional[str],
    task_root: str | Path = '.',
    module_paths: Sequence[str | Path] = (),
) -> HandlerDescriptor:
    """
    Resolve a handler string into a descriptor.

    Args:
        spec: Handler string (usually the _HANDLER environment variable)
        task_root: Directory handler files are relative to
        module_paths: Extra directories searched for MODULE handlers,
                      before the interpreter's import path

    Returns:
        HandlerDescriptor

    Raises:
        MalformedHandlerError: If the string matches no grammar branch
        HandlerFileNotFoundError: If the handler file doesn't exist
        HandlerModuleNotFoundError: If the handler module can't be found
    """
    kind, target, function_name = parse_handler_spec(spec)
    text = spec.strip()

    if kind == HandlerKind.MODULE:
        if not module_exists(target, module_paths):
            raise HandlerModuleNotFoundError(
                f"Module '{target}' not found in: "
                f"{', '.join(str(p) for p in module_paths) or 'import path'}"
            )
        return HandlerDescriptor(kind=kind, target=target, function_name=function_name, spec=text)

    path = Path(target)
    if not path.is_absolute():
        path = Path(task_root) / path
    path = path.absolute()

    if not path.exists():
        raise HandlerFileNotFoundError(f"Handler file not found: {path}")

    if not path.is_file():
        raise HandlerFileNotFoundError(f"Handler path is not a file: {path}")

    return HandlerDescriptor(kind=kind, target=str(path), function_name=function_name, spec=text)


def module_exists(module_name: str, module_paths: Sequence[str | Path] = ()) -> bool:
    """
    Check whether a module can be found without importing it.

    Only the top-level package is located; submodules are checked when the
    module is imported.
    """
    top_level = module_name.split('.')[0]

    search = [str(p) for p in module_paths if Path(p).is_dir()]
    if search and importlib.machinery.PathFinder.find_spec(top_level, search) is not None:
        return True

    try:
        return importlib.util.find_spec(top_level) is not None
    except (ImportError, ValueError):
        return False


def load_handler_file(path: str | Path, inject: Optional[Dict[str, Any]] = None) -> ModuleType:
    """
    Load a handler file as a module.

    The file's top-level statements run once, here. Names in `inject` are
    bound before the file runs, so the file may use or override them.

    Args:
        path: Path to the handler file (any extension)
        inject: Names to bind in the module namespace

    Returns:
        The loaded module object

    Raises:
        HandlerFileNotFoundError: If file doesn't exist
        HandlerLoadError: If file can't be loaded (syntax error, etc.)
    """
    path = Path(path)

    if not path.is_file():
        raise HandlerFileNotFoundError(f"Handler file not found: {path}")

    module_name = _module_name_for(path)
    loader = importlib.machinery.SourceFileLoader(module_name, str(path))
    spec = importlib.util.spec_from_file_location(module_name, path, loader=loader)

    if spec is None or spec.loader is None:
        raise HandlerLoadError(f"Could not create module spec for: {path}")

    module = importlib.util.module_from_spec(spec)
    if inject:
        module.__dict__.update(inject)

    # Registered so pickling and dataclasses inside the handler resolve
    sys.modules[module_name] = module

    try:
        spec.loader.exec_module(module)
    except (Exception, SystemExit) as e:
        sys.modules.pop(module_name, None)
        raise HandlerLoadError(f"Failed to load handler file {path}: {type(e).__name__}: {e}") from e

    return module


def prepend_sys_path(paths: Sequence[str | Path]) -> None:
    """Put directories at the front of sys.path, keeping their order"""
    for entry in reversed([str(p) for p in paths]):
        if entry in sys.path:
            sys.path.remove(entry)
        sys.path.insert(0, entry)


def import_handler_module(module_name: str, module_paths: Sequence[str | Path] = ()) -> ModuleType:
    """
    Import a handler module, searching `module_paths` first.

    Raises:
        HandlerModuleNotFoundError: If the module (or a parent package) is missing
        HandlerLoadError: If importing the module fails for any other reason
    """
    prepend_sys_path(module_paths)

    try:
        return importlib.import_module(module_name)
    except ModuleNotFoundError as e:
        # Only a missing handler module counts; a missing dependency of the
        # handler module is a load error
        if e.name and (module_name == e.name or module_name.startswith(e.name + '.')):
            raise HandlerModuleNotFoundError(f"Module '{module_name}' not found") from e
        raise HandlerLoadError(f"Failed to import module {module_name}: {type(e).__name__}: {e}") from e
    except (Exception, SystemExit) as e:
        raise HandlerLoadError(f"Failed to import module {module_name}: {type(e).__name__}: {e}") from e


def get_handler_function(namespace: ModuleType, descriptor: HandlerDescriptor) -> Callable:
    """
    Look up the descriptor's function in a loaded file or module.

    Raises:
        HandlerFunctionNotFoundError: FUNCTION file doesn't define it
        HandlerFunctionNotExportedError: MODULE doesn't export it
    """
    name = descriptor.function_name
    function = getattr(namespace, name, None)

    if descriptor.kind == HandlerKind.FUNCTION:
        if function is None or not callable(function):
            raise HandlerFunctionNotFoundError(
                f"Function '{name}' not found in {descriptor.target}. "
                f"Available functions: {_get_available_functions(namespace)}"
            )
        return function

    exported = getattr(namespace, '__all__', None)
    if function is None or not callable(function) or (exported is not None and name not in exported):
        raise HandlerFunctionNotExportedError(
            f"Module '{descriptor.target}' does not export function '{name}'"
        )
    return function


def _module_name_for(path: Path) -> str:
    """Helper: importable module name for a handler file"""
    stem = ''.join(ch if ch.isalnum() or ch == '_' else '_' for ch in path.stem)
    if not stem.isidentifier():
        stem = f'handler_{stem}'
    if stem in sys.modules:
        stem = f'{stem}_{abs(hash(str(path)))}'
    return stem


def _get_available_functions(namespace: ModuleType) -> list[str]:
    """Helper: public callables defined by a loaded handler file"""
    return sorted(
        name for name, value in vars(namespace).items()
        if callable(value) and not name.startswith('_')
        and getattr(value, '__module__', None) == namespace.__name__
    )


def _is_file_name(name: str) -> bool:
    """Helper: '<file>.<ext>' with a non-empty stem and extension"""
    if not name or name != name.strip() or name.endswith(('/', '\\')):
        return False
    pure = PurePath(name)
    return bool(pure.stem) and len(pure.suffix) > 1 and not pure.stem.startswith('.')


def _is_name(name: str) -> bool:
    """Helper: non-empty function name without whitespace"""
    return bool(name) and not any(ch.isspace() for ch in name)
