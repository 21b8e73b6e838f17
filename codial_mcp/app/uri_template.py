"""``file:///logs/{name}.log`` 같은 단순 URI 템플릿을 해석하고 매칭해요.

RFC 6570 레벨 1 표현식(``{var}``)만 지원해요. 각 변수는 ``/``를 제외한
한 개 이상의 문자와 매칭돼요.
"""

from __future__ import annotations

import re
from urllib.parse import unquote

_EXPRESSION = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


class UriTemplate:
    def __init__(self, template: str) -> None:
        self.template = template
        self.variables: list[str] = []
        pattern_parts: list[str] = []
        cursor = 0
        for match in _EXPRESSION.finditer(template):
            name = match.group(1)
            if name in self.variables:
                raise ValueError(f"URI 템플릿에 같은 변수가 두 번 들어 있어요: {name}")
            self.variables.append(name)
            pattern_parts.append(re.escape(template[cursor : match.start()]))
            pattern_parts.append(f"(?P<{name}>[^/]+?)")
            cursor = match.end()
        pattern_parts.append(re.escape(template[cursor:]))
        self._pattern = re.compile("^" + "".join(pattern_parts) + "$")

    def match(self, uri: str) -> dict[str, str] | None:
        """URI에서 변수 값을 추출해요. 매칭되지 않으면 ``None``을 돌려줘요."""
        found = self._pattern.match(uri)
        if found is None:
            return None
        return {name: unquote(value) for name, value in found.groupdict().items()}

    def __repr__(self) -> str:
        return f"UriTemplate({self.template!r})"
