import re
from types import MappingProxyType
from typing import Iterator, List, Mapping, Optional, Sequence, Tuple

from monoshelf.core.models import NavNode

def strip_fragment(href: str) -> str:
    """Returns the container reference without any '#fragment'."""
    return href.split('#')[0]

def humanize(reference: str) -> str:
    """
    Synthesizes a label from a reference when the TOC has none.
    'chapters/intro_01.xhtml' -> 'intro 01'
    """
    segment = reference.split('/')[-1]
    segment = re.sub(r'[-_]', ' ', segment)
    segment = re.sub(r'\.[^.]+$', '', segment)
    return segment.strip()

def walk_toc(nodes: Sequence[NavNode], depth: int = 0) -> Iterator[Tuple[NavNode, int]]:
    """Depth-first, pre-order walk yielding (node, depth)."""
    for node in nodes:
        yield node, depth
        if node.children:
            yield from walk_toc(node.children, depth + 1)

class LabelIndex:
    """Maps fragment-stripped section references to their TOC label."""

    def __init__(self, labels: Optional[Mapping[str, str]] = None):
        self._labels = MappingProxyType(dict(labels or {}))

    @classmethod
    def build(cls, toc_roots: Sequence[NavNode]) -> 'LabelIndex':
        labels = {}
        # Later duplicates overwrite earlier ones
        for node, _ in walk_toc(toc_roots):
            labels[strip_fragment(node.href)] = node.label.strip()
        return cls(labels)

    @property
    def labels(self) -> Mapping[str, str]:
        return self._labels

    @property
    def is_continuous(self) -> bool:
        """True when the book has no discrete sections to label."""
        return not self._labels

    def resolve(self, reference: str) -> Optional[str]:
        return self._labels.get(strip_fragment(reference))

    def label_for(self, reference: str) -> str:
        """Resolved label, or a humanized one when the TOC has no entry."""
        normalized = strip_fragment(reference)
        label = self._labels.get(normalized)
        return label if label is not None else humanize(normalized)

    def keys(self) -> List[str]:
        return list(self._labels.keys())

    def __len__(self) -> int:
        return len(self._labels)

    def __contains__(self, reference: object) -> bool:
        return isinstance(reference, str) and strip_fragment(reference) in self._labels
