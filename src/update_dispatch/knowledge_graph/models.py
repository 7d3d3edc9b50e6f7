from __future__ import annotations

import re
from dataclasses import dataclass

NS_MAIN = 0
NS_TALK = 1
NS_USER = 2
NS_PROJECT = 4
NS_FILE = 6
NS_TEMPLATE = 10
NS_HELP = 12
NS_CATEGORY = 14
NS_PROPERTY = 102
NS_PROPERTY_TALK = 103
NS_CONCEPT = 108

# Namespaces missing from this table still resolve; their key uses an NS<n> prefix.
NAMESPACES: dict[int, str] = {
    NS_MAIN: "",
    NS_TALK: "Talk",
    NS_USER: "User",
    3: "User_talk",
    NS_PROJECT: "Project",
    5: "Project_talk",
    NS_FILE: "File",
    7: "File_talk",
    NS_TEMPLATE: "Template",
    11: "Template_talk",
    NS_HELP: "Help",
    13: "Help_talk",
    NS_CATEGORY: "Category",
    15: "Category_talk",
    NS_PROPERTY: "Property",
    NS_PROPERTY_TALK: "Property_talk",
    NS_CONCEPT: "Concept",
    109: "Concept_talk",
}

_NS_BY_NAME = {name.lower(): ns for ns, name in NAMESPACES.items() if name}

# Characters that can never appear in a page title.
_ILLEGAL = re.compile(r"[#<>\[\]|{}\x00-\x1f\x7f]")


def normalize_dbkey(text: str) -> str:
    """Turn a title text into its DB key form.

    Whitespace runs become a single underscore, outer underscores are
    trimmed and the first letter is upper-cased.
    """

    s = re.sub(r"[\s_]+", "_", text or "").strip("_")
    return s[:1].upper() + s[1:]


@dataclass(frozen=True, slots=True)
class EntityReference:
    """A subject in the knowledge graph: a page, or a subobject of a page.

    Equality for dispatch purposes goes through `canonical_key`, which ignores
    the subobject: all subobjects of a page share that page's update target.
    """

    dbkey: str
    namespace: int = NS_MAIN
    interwiki: str = ""
    subobject: str = ""

    @classmethod
    def from_text(cls, text: str, namespace: int | None = None) -> EntityReference:
        if namespace is None:
            namespace = NS_MAIN
            prefix, sep, rest = text.partition(":")
            ns_name = re.sub(r"[\s_]+", "_", prefix.strip()).lower()
            if sep and ns_name in _NS_BY_NAME:
                namespace = _NS_BY_NAME[ns_name]
                text = rest
        return cls(dbkey=normalize_dbkey(text), namespace=namespace)

    @classmethod
    def deserialize(cls, s: str) -> EntityReference:
        """Parse the `dbkey#namespace#interwiki#subobject` form."""

        parts = s.split("#")
        if len(parts) < 2 or len(parts) > 4:
            raise ValueError(f"not a serialized entity reference: {s!r}")
        parts += [""] * (4 - len(parts))
        try:
            namespace = int(parts[1])
        except ValueError as e:
            raise ValueError(f"bad namespace in entity reference: {s!r}") from e
        return cls(dbkey=parts[0], namespace=namespace, interwiki=parts[2], subobject=parts[3])

    def serialize(self) -> str:
        return f"{self.dbkey}#{self.namespace}#{self.interwiki}#{self.subobject}"

    @property
    def text(self) -> str:
        return self.dbkey.replace("_", " ")

    @property
    def canonical_key(self) -> str:
        """Prefixed DB key: interwiki, namespace and normalized title."""

        key = normalize_dbkey(self.dbkey)
        ns_name = NAMESPACES.get(self.namespace)
        if ns_name is None:
            ns_name = f"NS{self.namespace}"
        if ns_name:
            key = f"{ns_name}:{key}"
        if self.interwiki:
            key = f"{self.interwiki}:{key}"
        return key

    def page(self) -> EntityReference | None:
        """The physical update target, or None if this has no backing page."""

        dbkey = normalize_dbkey(self.dbkey)
        if not dbkey or _ILLEGAL.search(dbkey) or self.namespace < 0:
            return None
        return EntityReference(dbkey=dbkey, namespace=self.namespace, interwiki=self.interwiki)

    def __str__(self) -> str:
        return self.canonical_key


# Labels of built-in properties a user may type in place of the key.
_PREDEFINED_LABELS = {
    "Has type": "_TYPE",
    "Modification date": "_MDAT",
    "Subproperty of": "_SUBP",
    "Has improper value for": "_ERRP",
    "Has query": "_ASK",
    "Display title of": "_DTITLE",
    "Allows value": "_PVAL",
}


@dataclass(frozen=True, slots=True)
class Property:
    """A relation type.

    Keys starting with an underscore denote built-in properties; these are
    stable facts and never cause a cascade of updates.
    """

    key: str
    inverse: bool = False

    @classmethod
    def from_user_label(cls, label: str) -> Property:
        label = label.strip()
        inverse = label.startswith("-")
        if inverse:
            label = label[1:].strip()
        readable = re.sub(r"[\s_]+", " ", label).strip()
        readable = readable[:1].upper() + readable[1:]
        key = _PREDEFINED_LABELS.get(readable) or normalize_dbkey(label)
        return cls(key=key, inverse=inverse)

    @property
    def is_user_defined(self) -> bool:
        return not self.key.startswith("_")

    @property
    def label(self) -> str:
        for text, key in _PREDEFINED_LABELS.items():
            if key == self.key:
                return text
        return self.key.replace("_", " ")

    def page(self) -> EntityReference | None:
        if not self.is_user_defined:
            return None
        return EntityReference(dbkey=self.key, namespace=NS_PROPERTY)


TYPE_ERROR = Property("_ERRP")
