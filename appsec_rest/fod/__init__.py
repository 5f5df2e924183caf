from .connection import FOD_DIALECT, FoDConnection, FoDConnectionConfig, escape_fod_value
from .api import FoDReleaseAPI
