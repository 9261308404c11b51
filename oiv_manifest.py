"""
In-memory model of an OpenIV package manifest (``assembly.xml``).

Document layout
---------------

    <package version="2.1" id="{...}" target="Five">
      <metadata>...</metadata>           <- opaque, passed through
      <colors>...</colors>               <- opaque, passed through
      <content>
        <add source="a.asi">a.asi</add>  <- copied straight to the game root
        <delete>old.asi</delete>
        <archive path="update\\update.rpf" createIfNotExist="True" type="RPF7">
          <add source="mod\\x.meta">common\\data\\x.meta</add>
          <delete>...</delete>
          <text path="...">...</text>    <- opaque, passed through
          <xml path="common\\data\\dlclist.xml">
            <add xpath="/SMandatoryPacksData/Paths">
              <item id="mpheist">dlcpacks:/mpheist/</item>
            </add>
          </xml>
          <archive path="x64\\data.rpf" ...>   <- nested container, same shape
        </archive>
      </content>
    </package>

Repeatable elements always load into lists, even when only one is present.
``deserialize(serialize(doc)) == doc`` holds for every document built through
``add_file``, ``add_dlc`` and ``merge``.
"""

from __future__ import annotations

import copy
import logging
import os
import uuid
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

import defusedxml
import defusedxml.ElementTree as DefusedET

from errors import ManifestLoadFailed
from path_decomposer import archive_key, decompose, join_oiv_path

ASSEMBLY_FILENAME = "assembly.xml"
DEFAULT_ARCHIVE_TYPE = "RPF7"
PACKAGE_FORMAT_VERSION = "2.1"
PACKAGE_TARGET = "Five"

UPDATE_CONTAINER = "update\\update.rpf"
DLC_LIST_PATH = "common\\data\\dlclist.xml"
CUSTOM_DLC_LIST = "dlclist.xml"
DLC_LIST_XPATH = "/SMandatoryPacksData/Paths"

_XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'

_log = logging.getLogger(__name__)


def _clean_text(text: str | None) -> str | None:
    if text is None or not text.strip():
        return None
    # line breaks only come from hand-formatted files; a single-line value is
    # an in-archive path and is kept as written
    if "\n" in text:
        return text.strip()
    return text


def _bool_attr(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() == "true"


def dlc_uri(name: str) -> str:
    return f"dlcpacks:/{name}/"


# ── Generic element ───────────────────────────────────────────────────


@dataclass
class XmlNode:
    """A plain XML element: attributes, text and child elements kept apart."""

    tag: str
    attributes: dict[str, str] = field(default_factory=dict)
    text: str | None = None
    children: list[XmlNode] = field(default_factory=list)

    @classmethod
    def from_element(cls, elem: ET.Element) -> XmlNode:
        return cls(
            tag=elem.tag,
            attributes=dict(elem.attrib),
            text=_clean_text(elem.text),
            children=[cls.from_element(child) for child in elem],
        )

    def to_element(self, parent: ET.Element | None = None) -> ET.Element:
        if parent is None:
            elem = ET.Element(self.tag, dict(self.attributes))
        else:
            elem = ET.SubElement(parent, self.tag, dict(self.attributes))
        if self.text is not None:
            elem.text = self.text
        for child in self.children:
            child.to_element(elem)
        return elem

    def find(self, tag: str) -> XmlNode | None:
        for child in self.children:
            if child.tag == tag:
                return child
        return None


# ── Content entries ───────────────────────────────────────────────────


@dataclass
class FileAddition:
    target: str
    source: str | None = None

    @classmethod
    def from_element(cls, elem: ET.Element) -> FileAddition:
        return cls(target=_clean_text(elem.text) or "", source=elem.get("source"))

    def to_element(self, parent: ET.Element) -> ET.Element:
        elem = ET.SubElement(parent, "add")
        if self.source is not None:
            elem.set("source", self.source)
        if self.target:
            elem.text = self.target
        return elem

    def with_source_prefix(self, prefix: str) -> FileAddition:
        # bare <add> entries have nothing to relocate
        if self.source is None:
            return FileAddition(target=self.target)
        return FileAddition(target=self.target, source=join_oiv_path(prefix, self.source))


@dataclass
class XmlItemEdit:
    xpath: str
    items: list[XmlNode] = field(default_factory=list)
    append: str | None = None

    @classmethod
    def from_element(cls, elem: ET.Element) -> XmlItemEdit:
        return cls(
            xpath=elem.get("xpath", ""),
            items=[XmlNode.from_element(child) for child in elem],
            append=elem.get("append"),
        )

    def to_element(self, parent: ET.Element, tag: str) -> ET.Element:
        elem = ET.SubElement(parent, tag, {"xpath": self.xpath})
        if self.append is not None:
            elem.set("append", self.append)
        for item in self.items:
            item.to_element(elem)
        return elem


@dataclass
class XmlEdit:
    """All edits to one XML file inside a container."""

    path: str
    additions: list[XmlItemEdit] = field(default_factory=list)
    removals: list[str] = field(default_factory=list)
    replacements: list[XmlItemEdit] = field(default_factory=list)

    @classmethod
    def from_element(cls, elem: ET.Element) -> XmlEdit:
        return cls(
            path=elem.get("path", ""),
            additions=[XmlItemEdit.from_element(e) for e in elem.findall("add")],
            removals=[e.get("xpath", "") for e in elem.findall("remove")],
            replacements=[XmlItemEdit.from_element(e) for e in elem.findall("replace")],
        )

    def to_element(self, parent: ET.Element) -> ET.Element:
        elem = ET.SubElement(parent, "xml", {"path": self.path})
        for edit in self.additions:
            edit.to_element(elem, "add")
        for xpath in self.removals:
            ET.SubElement(elem, "remove", {"xpath": xpath})
        for edit in self.replacements:
            edit.to_element(elem, "replace")
        return elem

    def extend(self, other: XmlEdit) -> None:
        self.additions.extend(other.additions)
        self.removals.extend(other.removals)
        self.replacements.extend(other.replacements)

    def has_item(self, xpath: str, item_id: str) -> bool:
        return any(
            edit.xpath == xpath and item.attributes.get("id") == item_id
            for edit in self.additions
            for item in edit.items
        )


# ── Containers ────────────────────────────────────────────────────────


class _ArchiveScope:
    """Find-or-create over a list of child containers."""

    archives: list[ArchiveNode]
    archive_type: str

    def find_archive(self, path: str) -> ArchiveNode | None:
        key = archive_key(path)
        for node in self.archives:
            if archive_key(node.path) == key:
                return node
        return None

    def ensure_archive(self, path: str) -> ArchiveNode:
        node = self.find_archive(path)
        if node is None:
            node = ArchiveNode(path=path, archive_type=self.archive_type)
            self.archives.append(node)
            _log.debug("Declared container %s", path)
        return node

    def walk_archives(self) -> Iterator[ArchiveNode]:
        """Depth-first iteration over every container below this scope."""
        for node in self.archives:
            yield node
            yield from node.walk_archives()


@dataclass
class ArchiveNode(_ArchiveScope):
    path: str
    archive_type: str = DEFAULT_ARCHIVE_TYPE
    create_if_not_exist: bool = True
    additions: list[FileAddition] = field(default_factory=list)
    deletions: list[str] = field(default_factory=list)
    defragmentation: list[XmlNode] = field(default_factory=list)
    text_edits: list[XmlNode] = field(default_factory=list)
    xml_edits: list[XmlEdit] = field(default_factory=list)
    archives: list[ArchiveNode] = field(default_factory=list)

    def find_xml_edit(self, path: str) -> XmlEdit | None:
        key = archive_key(path)
        for edit in self.xml_edits:
            if archive_key(edit.path) == key:
                return edit
        return None

    def ensure_xml_edit(self, path: str) -> XmlEdit:
        edit = self.find_xml_edit(path)
        if edit is None:
            edit = XmlEdit(path=path)
            self.xml_edits.append(edit)
        return edit

    def with_source_prefix(self, prefix: str) -> ArchiveNode:
        """Deep copy with every ``source`` in this subtree moved under ``prefix``."""
        return ArchiveNode(
            path=self.path,
            archive_type=self.archive_type,
            create_if_not_exist=self.create_if_not_exist,
            additions=[add.with_source_prefix(prefix) for add in self.additions],
            deletions=list(self.deletions),
            defragmentation=copy.deepcopy(self.defragmentation),
            text_edits=copy.deepcopy(self.text_edits),
            xml_edits=copy.deepcopy(self.xml_edits),
            archives=[child.with_source_prefix(prefix) for child in self.archives],
        )

    @classmethod
    def from_element(cls, elem: ET.Element, default_type: str) -> ArchiveNode:
        archive_type = elem.get("type", default_type)
        return cls(
            path=elem.get("path", ""),
            archive_type=archive_type,
            create_if_not_exist=_bool_attr(elem.get("createIfNotExist")),
            additions=[FileAddition.from_element(e) for e in elem.findall("add")],
            deletions=[_clean_text(e.text) or "" for e in elem.findall("delete")],
            defragmentation=[XmlNode.from_element(e) for e in elem.findall("defragmentation")],
            text_edits=[XmlNode.from_element(e) for e in elem.findall("text")],
            xml_edits=[XmlEdit.from_element(e) for e in elem.findall("xml")],
            archives=[cls.from_element(e, archive_type) for e in elem.findall("archive")],
        )

    def to_element(self, parent: ET.Element) -> ET.Element:
        elem = ET.SubElement(
            parent,
            "archive",
            {
                "path": self.path,
                "createIfNotExist": "True" if self.create_if_not_exist else "False",
                "type": self.archive_type,
            },
        )
        for add in self.additions:
            add.to_element(elem)
        for target in self.deletions:
            ET.SubElement(elem, "delete").text = target
        for node in self.defragmentation:
            node.to_element(elem)
        for node in self.text_edits:
            node.to_element(elem)
        for edit in self.xml_edits:
            edit.to_element(elem)
        for child in self.archives:
            child.to_element(elem)
        return elem


def _combine_archive(scope: _ArchiveScope, node: ArchiveNode) -> None:
    target = scope.find_archive(node.path)
    if target is None:
        scope.archives.append(node)
        return
    target.additions.extend(node.additions)
    target.deletions.extend(node.deletions)
    target.defragmentation.extend(node.defragmentation)
    target.text_edits.extend(node.text_edits)
    for edit in node.xml_edits:
        existing = target.find_xml_edit(edit.path)
        if existing is None:
            target.xml_edits.append(edit)
        else:
            existing.extend(edit)
    for child in node.archives:
        _combine_archive(target, child)


# ── Document ──────────────────────────────────────────────────────────


@dataclass
class ManifestDocument(_ArchiveScope):
    package_attributes: dict[str, str] = field(default_factory=dict)
    metadata: XmlNode | None = None
    colors: XmlNode | None = None
    additions: list[FileAddition] = field(default_factory=list)
    deletions: list[str] = field(default_factory=list)
    archives: list[ArchiveNode] = field(default_factory=list)
    archive_type: str = DEFAULT_ARCHIVE_TYPE

    @classmethod
    def create_base(
        cls,
        name: str,
        author: str,
        version: tuple[int, int] = (1, 0),
        description: str | None = None,
        archive_type: str = DEFAULT_ARCHIVE_TYPE,
    ) -> ManifestDocument:
        """Fresh master document with the metadata OpenIV shows in its installer."""
        package_id = "{" + str(uuid.uuid5(uuid.NAMESPACE_URL, f"oivpack:{name}")).upper() + "}"
        major, minor = version
        metadata = XmlNode(
            "metadata",
            children=[
                XmlNode("name", text=name),
                XmlNode(
                    "version",
                    children=[XmlNode("major", text=str(major)), XmlNode("minor", text=str(minor))],
                ),
                XmlNode("author", children=[XmlNode("displayName", text=author)]),
                XmlNode("description", text=description or name),
            ],
        )
        colors = XmlNode(
            "colors",
            children=[
                XmlNode("headerBackground", {"useBlackTextColor": "False"}, "$FF202020"),
                XmlNode("iconBackground", text="$FF202020"),
            ],
        )
        return cls(
            package_attributes={
                "version": PACKAGE_FORMAT_VERSION,
                "id": package_id,
                "target": PACKAGE_TARGET,
            },
            metadata=metadata,
            colors=colors,
            archive_type=archive_type,
        )

    # ── Edits ─────────────────────────────────────────────────────────

    def add_file(self, in_path: str, out_path: str, archive_name: str) -> ArchiveNode:
        """Inject ``in_path`` at ``out_path`` inside the container ``archive_name``.

        ``out_path`` may itself cross nested ``.rpf`` boundaries; one container
        is declared (or reused) per boundary.
        """
        archive = self.ensure_archive(archive_name)
        decomposition = decompose(out_path)
        for segment in decomposition.archives:
            archive = archive.ensure_archive(segment)
        archive.additions.append(FileAddition(target=decomposition.relative_path, source=in_path))
        return archive

    def add_dlc(
        self,
        name: str,
        archive_name: str = UPDATE_CONTAINER,
        custom: bool = False,
    ) -> XmlEdit:
        """Register DLC pack ``name`` in the dlclist of ``archive_name``.

        With ``custom`` the list is a ``dlclist.xml`` shipped in the package
        instead of the container's own ``common\\data\\dlclist.xml``.
        """
        archive = self.ensure_archive(archive_name)
        if custom and not any(add.target == CUSTOM_DLC_LIST for add in archive.additions):
            archive.additions.append(FileAddition(target=CUSTOM_DLC_LIST, source=CUSTOM_DLC_LIST))

        dlc_list = archive.ensure_xml_edit(CUSTOM_DLC_LIST if custom else DLC_LIST_PATH)
        if dlc_list.has_item(DLC_LIST_XPATH, name):
            _log.debug("DLC %s already registered in %s", name, archive.path)
            return dlc_list
        dlc_list.additions.append(
            XmlItemEdit(
                xpath=DLC_LIST_XPATH,
                items=[XmlNode("item", {"id": name}, dlc_uri(name))],
            )
        )
        return dlc_list

    def merge(
        self,
        other_document_path: str | Path,
        source_prefix: str,
        *,
        combine_archives: bool = False,
    ) -> ManifestDocument:
        """Fold another package's manifest into this one.

        ``other_document_path`` is an ``assembly.xml`` or the directory holding
        one. Every ``source`` of the other document is moved under
        ``source_prefix``, since its content now lives in a subfolder of ours.

        Containers are appended, not matched by path: two packages touching
        ``update\\update.rpf`` leave two sibling ``<archive>`` entries, and
        merging the same package twice adds its containers twice. Pass
        ``combine_archives=True`` to fold them into existing nodes instead.
        """
        other = ManifestDocument.load(other_document_path, archive_type=self.archive_type)
        self.merge_document(other, source_prefix, combine_archives=combine_archives)
        return other

    def merge_document(
        self,
        other: ManifestDocument,
        source_prefix: str,
        *,
        combine_archives: bool = False,
    ) -> None:
        self.additions.extend(add.with_source_prefix(source_prefix) for add in other.additions)
        self.deletions.extend(other.deletions)
        for node in other.archives:
            relocated = node.with_source_prefix(source_prefix)
            if combine_archives:
                _combine_archive(self, relocated)
            else:
                self.archives.append(relocated)
        _log.debug(
            "Merged %d addition(s) and %d container(s) under %s",
            len(other.additions),
            len(other.archives),
            source_prefix,
        )

    # ── Serialization ─────────────────────────────────────────────────

    def to_element(self) -> ET.Element:
        root = ET.Element("package", dict(self.package_attributes))
        if self.metadata is not None:
            self.metadata.to_element(root)
        if self.colors is not None:
            self.colors.to_element(root)
        content = ET.SubElement(root, "content")
        for add in self.additions:
            add.to_element(content)
        for target in self.deletions:
            ET.SubElement(content, "delete").text = target
        for node in self.archives:
            node.to_element(content)
        return root

    def serialize(self) -> str:
        root = self.to_element()
        ET.indent(root, space="  ")
        return _XML_DECLARATION + ET.tostring(root, encoding="unicode") + "\n"

    @classmethod
    def deserialize(
        cls,
        text: str | bytes,
        archive_type: str = DEFAULT_ARCHIVE_TYPE,
        *,
        source_path: str | Path | None = None,
    ) -> ManifestDocument:
        try:
            root = DefusedET.fromstring(text)
        except (ET.ParseError, defusedxml.DefusedXmlException) as exc:
            raise ManifestLoadFailed(source_path, f"invalid XML: {exc}") from exc

        if root.tag != "package":
            raise ManifestLoadFailed(source_path, f"unexpected root element <{root.tag}>")

        metadata = root.find("metadata")
        colors = root.find("colors")
        doc = cls(
            package_attributes=dict(root.attrib),
            metadata=XmlNode.from_element(metadata) if metadata is not None else None,
            colors=XmlNode.from_element(colors) if colors is not None else None,
            archive_type=archive_type,
        )
        content = root.find("content")
        if content is None:
            return doc

        doc.additions = [FileAddition.from_element(e) for e in content.findall("add")]
        doc.deletions = [_clean_text(e.text) or "" for e in content.findall("delete")]
        doc.archives = [ArchiveNode.from_element(e, archive_type) for e in content.findall("archive")]
        return doc

    @classmethod
    def load(cls, path: str | Path, archive_type: str = DEFAULT_ARCHIVE_TYPE) -> ManifestDocument:
        path = Path(path)
        if path.is_dir():
            path = path / ASSEMBLY_FILENAME
        if not path.is_file():
            raise ManifestLoadFailed(path, "file not found")
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise ManifestLoadFailed(path, str(exc)) from exc
        return cls.deserialize(data, archive_type, source_path=path)

    def save(self, path: str | Path) -> Path:
        """Write the document; the target only ever holds a complete file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_text(self.serialize(), encoding="utf-8")
        os.replace(tmp_path, path)
        return path
