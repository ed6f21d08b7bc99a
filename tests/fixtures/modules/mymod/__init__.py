"""Handler module found through the module search path"""

__all__ = ["invoke_handler", "fail_handler", "emit_handler"]


def invoke_handler(event, context):
    return {"ok": True, "request_id": context.aws_request_id}


def fail_handler(event, context):
    raise TypeError("cannot convert event to order")


def emit_handler(event, context):
    emit(1, 2)
    return 3


def hidden_handler(event, context):
    return "not exported"
