"""Browser module: instance pool, session registry and launch configuration."""

from openconsole.browser.pool import AttachedBrowser, InstancePool
from openconsole.browser.profile import LaunchConfig, PageOptions, ViewportSize
from openconsole.browser.registry import SessionRegistry

__all__ = ["AttachedBrowser", "InstancePool", "LaunchConfig", "PageOptions", "SessionRegistry", "ViewportSize"]
