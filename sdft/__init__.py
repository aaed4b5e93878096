__name__ = "sdft"
__version__ = "1.0.0"
