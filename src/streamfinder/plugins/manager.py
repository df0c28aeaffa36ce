"""
manager.py
==========
Seleção do plugin de interação para uma página.

O YouTube vem registrado por padrão; qualquer outra página usa o
GenericPlugin, que apenas clica no play e força a reprodução.
"""

import re
from typing import List, Pattern, Tuple

from streamfinder.plugins.generic.base import BasePlugin, GenericPlugin
from streamfinder.plugins.specific_sites.youtube import YouTubePlugin


class PluginManager:
    """O primeiro plugin registrado cujo ``domain_pattern`` casar com a URL vence."""

    def __init__(self):
        self._registry: List[Tuple[Pattern, BasePlugin]] = []
        self.generic_plugin = GenericPlugin()
        self.register_plugin(YouTubePlugin())

    @property
    def plugins(self) -> List[BasePlugin]:
        return [plugin for _, plugin in self._registry]

    def register_plugin(self, plugin: BasePlugin) -> None:
        self._registry.append((re.compile(plugin.domain_pattern, re.IGNORECASE), plugin))

    def get_plugin_for_url(self, url: str) -> BasePlugin:
        match = next((p for pattern, p in self._registry if pattern.search(url)), None)
        return match or self.generic_plugin
