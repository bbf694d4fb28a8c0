"""TaskFlow storage core: users, hierarchical tasks and the services over them."""

__version__ = "0.1.0"
