"""Boot image and DTBH image tools, vibrator and USB Type-C sysfs services for Exynos devices."""

__version__ = "0.1.0"