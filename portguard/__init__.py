# portguard - Listening-port baseline monitor and firewall reconciler
try:
    from importlib.metadata import version as _version
    __version__ = _version("portguard")
except Exception:
    __version__ = "0.3.1"
