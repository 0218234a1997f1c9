"""Shared test helpers: fake providers, a fake clock, archive and diagram factories."""

import io
import json
import zipfile

from codemapper.agent.provider import Completion
from codemapper.models import DiagramNode, DiagramPayload


class FakeClock:
    def __init__(self, start: float) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, secs: float) -> None:
        self.now += secs


class FakeProvider:
    """GenerationProvider returning canned completions in order, recording prompts."""

    def __init__(self, *texts: str, prompt_tokens: int = 1000, completion_tokens: int = 200) -> None:
        self._texts = list(texts)
        self.prompts: list[str] = []
        self._prompt_tokens = prompt_tokens
        self._completion_tokens = completion_tokens

    def generate(self, prompt: str, system: str | None = None) -> Completion:
        self.prompts.append(prompt)
        text = self._texts.pop(0) if len(self._texts) > 1 else self._texts[0]
        return Completion(
            text=text,
            prompt_tokens=self._prompt_tokens,
            completion_tokens=self._completion_tokens,
        )


class RaisingProvider:
    def __init__(self, exc: Exception | None = None) -> None:
        self.exc = exc or RuntimeError("backend down")
        self.calls = 0

    def generate(self, prompt: str, system: str | None = None) -> Completion:
        self.calls += 1
        raise self.exc


def make_zip(files: dict[str, str]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buf.getvalue()


def make_diagram(
    diagram_id: str = "data-flow",
    kind: str = "data_flow",
    title: str = "Data Flow",
    insights: list[str] | None = None,
    nodes: list[DiagramNode] | None = None,
) -> DiagramPayload:
    return DiagramPayload(
        id=diagram_id,
        type=kind,
        title=title,
        description=f"{title} description.",
        mermaid="flowchart LR\n  a --> b",
        nodes=nodes if nodes is not None else [
            DiagramNode(id="a", label="Input", insight="Requests enter here."),
            DiagramNode(id="b", label="Store", insight="Persisted state.", style={"border": "1px solid #4f5fbd"}),
        ],
        edges=[],
        insights=insights if insights is not None else ["Seed insight."],
    )


def diagrams_reply(diagrams: list[DiagramPayload], fenced: bool = False) -> str:
    body = json.dumps({"diagrams": [d.to_dict() for d in diagrams]})
    return f"Here you go:\n```json\n{body}\n```" if fenced else body
