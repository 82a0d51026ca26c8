"""
iotaccess Modules - Black Box Architecture

Each module is a self-contained black box with:
- Clear interface (public API)
- Hidden wire formats and error mapping
- Single responsibility

Modules communicate only through well-defined interfaces.
"""
