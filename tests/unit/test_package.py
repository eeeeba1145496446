"""Smoke tests for zwave2mqtt package structure.

Test Techniques Used:
- Specification-based: Verify package imports and version metadata exist.
"""

import zwave2mqtt


class TestPackageStructure:
    """Verify the zwave2mqtt package is properly installed and importable."""

    def test_package_importable(self) -> None:
        """Package can be imported without error.

        Technique: Specification-based — verifying the package contract.
        """
        assert zwave2mqtt is not None

    def test_version_is_string(self) -> None:
        """Package exposes a non-empty version string.

        Technique: Specification-based — verifying version metadata contract.
        """
        assert isinstance(zwave2mqtt.__version__, str)
        assert zwave2mqtt.__version__
