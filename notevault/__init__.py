"""notevault: notebook file manager backend with resumable chunked uploads"""

__version__ = "1.0.0"
