# Receipt commitment and selective-disclosure service

__version__ = "0.1.0"
