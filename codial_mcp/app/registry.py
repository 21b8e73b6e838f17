"""서버가 노출하는 정의를 모아 두는 레지스트리예요."""

from __future__ import annotations

from codial_mcp.app.definitions import (
    PromptDefinition,
    ResourceDefinition,
    ResourceTemplateDefinition,
    ToolDefinition,
)
from codial_mcp.app.uri_template import UriTemplate
from libs.common.logging import get_logger

logger = get_logger("codial_mcp.registry")


class RegistryFrozenError(RuntimeError):
    """서버가 시작된 뒤에 정의를 추가하려고 하면 발생해요."""


class CapabilityRegistry:
    """도구, 리소스, 리소스 템플릿, 프롬프트를 등록 순서대로 보관해요.

    같은 이름(또는 URI)으로 여러 번 등록할 수 있지만 조회는 항상 처음 등록한
    정의를 돌려줘요. 서버가 시작되면 `freeze()`로 잠겨서 이후엔 읽기만 가능해요.

    사용법::

        registry = CapabilityRegistry()
        registry.add_tool(ToolDefinition(name="add", execute=add))
        registry.freeze()

        tool = registry.find_tool("add")
    """

    def __init__(self) -> None:
        self._tools: list[ToolDefinition] = []
        self._resources: list[ResourceDefinition] = []
        self._templates: list[tuple[ResourceTemplateDefinition, UriTemplate]] = []
        self._prompts: list[PromptDefinition] = []
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    # ── 등록 ────────────────────────────────────────────────────────────────

    def add_tool(self, tool: ToolDefinition) -> None:
        self._ensure_mutable()
        if self.find_tool(tool.name) is not None:
            logger.warning("duplicate_definition", kind="tool", name=tool.name)
        self._tools.append(tool)

    def add_resource(self, resource: ResourceDefinition) -> None:
        self._ensure_mutable()
        if self.find_resource(resource.uri) is not None:
            logger.warning("duplicate_definition", kind="resource", name=resource.uri)
        self._resources.append(resource)

    def add_resource_template(self, template: ResourceTemplateDefinition) -> None:
        self._ensure_mutable()
        if self.find_template(template.uri_template) is not None:
            logger.warning("duplicate_definition", kind="resource_template", name=template.uri_template)
        self._templates.append((template, UriTemplate(template.uri_template)))

    def add_prompt(self, prompt: PromptDefinition) -> None:
        self._ensure_mutable()
        if self.find_prompt(prompt.name) is not None:
            logger.warning("duplicate_definition", kind="prompt", name=prompt.name)
        self._prompts.append(prompt)

    def _ensure_mutable(self) -> None:
        if self._frozen:
            raise RegistryFrozenError("서버가 시작된 뒤에는 정의를 추가할 수 없어요.")

    # ── 조회 ────────────────────────────────────────────────────────────────

    @property
    def tools(self) -> list[ToolDefinition]:
        return list(self._tools)

    @property
    def resources(self) -> list[ResourceDefinition]:
        return list(self._resources)

    @property
    def resource_templates(self) -> list[ResourceTemplateDefinition]:
        return [template for template, _ in self._templates]

    @property
    def prompts(self) -> list[PromptDefinition]:
        return list(self._prompts)

    def find_tool(self, name: str) -> ToolDefinition | None:
        return next((tool for tool in self._tools if tool.name == name), None)

    def find_resource(self, uri: str) -> ResourceDefinition | None:
        return next((resource for resource in self._resources if resource.uri == uri), None)

    def find_template(self, uri_template: str) -> ResourceTemplateDefinition | None:
        return next((template for template, _ in self._templates if template.uri_template == uri_template), None)

    def match_template(self, uri: str) -> tuple[ResourceTemplateDefinition, dict[str, str]] | None:
        """등록 순서대로 템플릿을 대입해 보고 처음 매칭된 템플릿과 추출 값을 돌려줘요."""
        for template, compiled in self._templates:
            values = compiled.match(uri)
            if values is not None:
                return template, values
        return None

    def find_prompt(self, name: str) -> PromptDefinition | None:
        return next((prompt for prompt in self._prompts if prompt.name == name), None)

    def __len__(self) -> int:
        return len(self._tools) + len(self._resources) + len(self._templates) + len(self._prompts)
