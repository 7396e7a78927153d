"""nginx-asg-sync - keep NGINX Plus upstreams in sync with cloud scaling groups."""

__version__ = "0.2.1"
