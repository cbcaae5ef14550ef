"""Environment deployer — provision, configure and tear down remote environments."""

__version__ = "0.1.0"
