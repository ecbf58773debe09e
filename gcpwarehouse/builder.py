from typing import Any, Dict, Optional

import pulumi

from gcpwarehouse.config import SECTIONS, WarehouseConfig
from gcpwarehouse.context import BuildContext
from gcpwarehouse.resources import RESOURCE_KINDS


class ResourceBuilder:

    def __init__(self, config: WarehouseConfig, context: Optional[BuildContext] = None):
        self.config = config
        self.context = context or BuildContext.from_config(config)

    @property
    def resources(self) -> Dict[str, Any]:
        return self.context.resource_cache

    def build(self) -> Dict[str, Any]:
        # Kinds are built in SECTIONS order so references only point backwards.
        for section in SECTIONS:
            self.build_section(section)
        return self.resources

    def build_section(self, section: str) -> None:
        declarations = getattr(self.config, section)
        if not declarations:
            return

        builder_class = RESOURCE_KINDS[section]
        pulumi.log.info(f"Building {len(declarations)} {section}")
        for declaration in declarations:
            builder = builder_class(declaration.name, self.context)
            builder.build(declaration)

    def exports(self) -> Dict[str, Any]:
        outputs = {}
        for name, resource in self.resources.items():
            try:
                outputs[name] = resource.id
            except AttributeError as e:
                pulumi.log.warn(f"Failed to export resource '{name}': {e}")
        for sink in self.config.logging_sinks:
            resource = self.resources.get(sink.name)
            if resource is not None:
                outputs[f"{sink.name}_writer_identity"] = resource.writer_identity
        return outputs
