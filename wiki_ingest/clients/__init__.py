from .hoyowiki import HoyoWikiClient

__all__ = ["HoyoWikiClient"]
