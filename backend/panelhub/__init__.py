"""PanelHub — discovery, live control and smart actions for home-automation panels."""

__version__ = "0.3.0"
