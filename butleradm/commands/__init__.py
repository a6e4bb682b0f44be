from . import bootstrap

__all__ = ['bootstrap']
