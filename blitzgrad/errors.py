class AutogradError(Exception):
    """Base class for errors raised by blitzgrad."""


class ShapeMismatch(AutogradError, ValueError):
    # operand/operand or operand/gradient shapes are incompatible
    pass


class UntrackedRootError(AutogradError, RuntimeError):
    # backward() on a value that has no graph to walk
    pass


class NumericalError(AutogradError, ArithmeticError):
    # division by zero, invalid operation or NaN gradient
    pass


class DeviceMismatch(AutogradError, ValueError):
    # operands live on different backends
    pass
