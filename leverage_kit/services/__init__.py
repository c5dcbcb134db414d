"""Composers and the session facade"""
from .deleverage import DeleverageComposer
from .leverage import LeverageComposer
from .session import LeverageSession

__all__ = ["DeleverageComposer", "LeverageComposer", "LeverageSession"]
