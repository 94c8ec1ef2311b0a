"""EventWeather: weather-alert rule engine for ticketed events."""

__version__ = "0.1.0"
