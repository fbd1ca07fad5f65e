"""Plant diagnosis backend: model serving, severity classification and rollups."""

__version__ = "0.1.0"
