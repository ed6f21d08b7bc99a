import sys

from lambda_script_runtime.runtime.bootstrap import main

if __name__ == "__main__":
    sys.exit(main())
