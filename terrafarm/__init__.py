"""terrafarm - ephemeral DigitalOcean build farms driven by terraform.

Creates a farm of build droplets from a terraform template, watches it with a
detached monitor process and destroys it once its time to live runs out and no
build is in progress.

Example:
    terrafarm create --ttl 3h --max-wait 1h
    terrafarm status
    terrafarm prolong 2h
    terrafarm destroy
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
