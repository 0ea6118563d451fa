"""Lower SysY syntax trees to Koopa IR and translate Koopa IR to RISC-V assembly."""

__version__ = "0.1.0"
__all__ = ["__version__"]