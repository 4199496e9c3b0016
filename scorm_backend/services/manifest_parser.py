"""
SCORM Manifest Parser

Turns ``imsmanifest.xml`` text into a typed manifest tree, detects the SCORM
revision (1.2 or 2004) and resolves the launch URL of the first SCO.
Pure functions over text: no I/O, safe to run on any worker.
"""

import logging
import xml.etree.ElementTree as ET
from typing import Dict, Iterable, List, Optional, Tuple, Union

from ..models.scorm import (
    ParsedManifest,
    SCORMItem,
    SCORMManifest,
    SCORMMetadata,
    SCORMOrganization,
    SCORMResource,
    SCORMSequencing,
)

logger = logging.getLogger(__name__)

SCORM_12_NAMESPACE = "http://www.imsproject.org/xsd/imscp_rootv1p1p2"
ADLCP_12_NAMESPACE = "http://www.adlnet.org/xsd/adlcp_rootv1p2"
ADLCP_2004_NAMESPACE = "http://www.adlnet.org/xsd/adlcp_v1p3"

UNTITLED = "Untitled"

# Namespace substrings on the root that identify a 2004 package
SCORM_2004_NAMESPACE_MARKERS = ("adlcp_v1p3", "adlseq")
SCORM_12_NAMESPACE_MARKERS = ("imscp_rootv1p1p2",)

# Attribute spellings for the SCO type, highest priority first. Prefixed
# names only survive parsing when the prefix is undeclared; namespaced names
# are what ElementTree produces for declared prefixes.
SCORM_TYPE_ATTRIBUTE_PROBES = (
    "adlcp:scormtype",
    "adlcp:scormType",
    f"{{{ADLCP_2004_NAMESPACE}}}scormType",
    f"{{{ADLCP_12_NAMESPACE}}}scormtype",
    f"{{{SCORM_12_NAMESPACE}}}scormtype",
)


class ManifestParseError(Exception):
    """Raised when manifest XML is malformed or has no <manifest> root."""


class LaunchResolutionError(Exception):
    """Raised when no launchable SCO can be resolved from a manifest."""


def _local_name(tag: str) -> str:
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def _namespace(tag: str) -> str:
    if isinstance(tag, str) and tag.startswith("{"):
        return tag[1:].split("}", 1)[0]
    return ""


def _children(element: ET.Element, name: str) -> List[ET.Element]:
    return [child for child in element if _local_name(child.tag) == name]


def _first_child(element: ET.Element, name: str) -> Optional[ET.Element]:
    for child in element:
        if _local_name(child.tag) == name:
            return child
    return None


def _child_text(element: ET.Element, name: str) -> Optional[str]:
    child = _first_child(element, name)
    if child is None:
        return None
    text = "".join(child.itertext()).strip()
    return text or None


class SCORMManifestParser:
    """Parser for SCORM 1.2 and SCORM 2004 content package manifests"""

    # (signal, version) pairs evaluated in order; first match wins
    def _version_rules(self):
        return (
            (self._declares_2004_namespace, "2004"),
            (self._schemaversion_is_2004, "2004"),
            (self._schemaversion_is_12, "1.2"),
            (self._root_namespace_is_12, "1.2"),
        )

    def parse_manifest(self, xml_text: Union[str, bytes]) -> ParsedManifest:
        """
        Parse manifest XML into a manifest tree plus detected SCORM version.

        Args:
            xml_text: Raw manifest content (str, or bytes honouring the XML
                encoding declaration)

        Returns:
            ParsedManifest with ``version`` and ``manifest``

        Raises:
            ManifestParseError: XML is not well-formed or root is not <manifest>
        """
        root, declared_namespaces = self._load(xml_text)

        if _local_name(root.tag) != "manifest":
            raise ManifestParseError(
                "No <manifest> element found in manifest XML "
                f"(root element is <{_local_name(root.tag)}>)"
            )

        version = self.detect_version(root, declared_namespaces)
        organizations, default_org = self._parse_organizations(root)

        manifest = SCORMManifest(
            identifier=root.get("identifier") or "unknown",
            version=root.get("version") or None,
            organizations=organizations,
            defaultOrganization=default_org,
            resources=self._parse_resources(root),
            metadata=self._parse_metadata(root),
        )
        logger.debug(
            "Parsed manifest %s: SCORM %s, %d organization(s), %d resource(s)",
            manifest.identifier,
            version,
            len(manifest.organizations),
            len(manifest.resources),
        )
        return ParsedManifest(version=version, manifest=manifest)

    def _load(
        self, xml_text: Union[str, bytes]
    ) -> Tuple[ET.Element, List[str]]:
        if isinstance(xml_text, str):
            xml_text = xml_text.lstrip("\ufeff")

        parser = ET.XMLPullParser(events=("start-ns", "start"))
        try:
            parser.feed(xml_text)
            parser.close()
        except ET.ParseError as e:
            raise ManifestParseError(f"Malformed manifest XML: {e}") from e

        root = None
        declared: List[str] = []
        for event, payload in parser.read_events():
            if root is not None:
                break
            if event == "start-ns":
                declared.append(payload[1])
            elif event == "start":
                root = payload

        if root is None:
            raise ManifestParseError("No <manifest> element found in manifest XML")
        return root, declared

    # Version detection ----------------------------------------------------

    def detect_version(
        self, root: ET.Element, declared_namespaces: Iterable[str] = ()
    ) -> str:
        context = {
            "root": root,
            "namespaces": list(declared_namespaces),
            "schemaversion": self._schemaversion(root),
        }
        for rule, version in self._version_rules():
            if rule(context):
                return version
        logger.info(
            "No SCORM version signal in manifest %s; assuming 1.2",
            root.get("identifier"),
        )
        return "1.2"

    def _schemaversion(self, root: ET.Element) -> str:
        metadata = _first_child(root, "metadata")
        if metadata is None:
            return ""
        return _child_text(metadata, "schemaversion") or ""

    def _declares_2004_namespace(self, context: Dict) -> bool:
        values = list(context["namespaces"]) + list(context["root"].attrib.values())
        return any(
            marker in value
            for value in values
            for marker in SCORM_2004_NAMESPACE_MARKERS
        )

    def _schemaversion_is_2004(self, context: Dict) -> bool:
        text = context["schemaversion"]
        return text.startswith("2004") or text == "CAM 1.3"

    def _schemaversion_is_12(self, context: Dict) -> bool:
        return context["schemaversion"] == "1.2"

    def _root_namespace_is_12(self, context: Dict) -> bool:
        namespace = _namespace(context["root"].tag)
        return any(marker in namespace for marker in SCORM_12_NAMESPACE_MARKERS)

    # Organizations --------------------------------------------------------

    def _parse_organizations(
        self, root: ET.Element
    ) -> Tuple[List[SCORMOrganization], str]:
        orgs_el = _first_child(root, "organizations")
        if orgs_el is None:
            return [], ""

        organizations = []
        for org_el in _children(orgs_el, "organization"):
            organizations.append(
                SCORMOrganization(
                    identifier=org_el.get("identifier", ""),
                    title=_child_text(org_el, "title") or UNTITLED,
                    items=self._parse_items(org_el),
                )
            )
        return organizations, orgs_el.get("default", "")

    def _parse_items(self, parent: ET.Element) -> List[SCORMItem]:
        """Build the item tree depth-first without recursion."""
        top_level: List[SCORMItem] = []
        stack = [(item_el, top_level) for item_el in reversed(_children(parent, "item"))]

        while stack:
            item_el, siblings = stack.pop()
            item = SCORMItem(
                identifier=item_el.get("identifier", ""),
                title=_child_text(item_el, "title") or UNTITLED,
                resourceIdentifier=item_el.get("identifierref") or None,
                sequencing=self._parse_sequencing(item_el),
            )
            siblings.append(item)
            for child_el in reversed(_children(item_el, "item")):
                stack.append((child_el, item.children))

        return top_level

    def _parse_sequencing(self, item_el: ET.Element) -> Optional[SCORMSequencing]:
        threshold_el = _first_child(item_el, "completionThreshold")
        if threshold_el is None:
            return None

        raw = threshold_el.get("minProgressMeasure") or (threshold_el.text or "").strip()
        try:
            threshold = float(raw) if raw else 1.0
        except ValueError:
            logger.warning(
                "Ignoring invalid completionThreshold %r on item %s",
                raw,
                item_el.get("identifier"),
            )
            threshold = 1.0
        return SCORMSequencing(completionThreshold=min(max(threshold, 0.0), 1.0))

    # Resources ------------------------------------------------------------

    def _parse_resources(self, root: ET.Element) -> List[SCORMResource]:
        resources_el = _first_child(root, "resources")
        if resources_el is None:
            return []

        resources = []
        for res_el in _children(resources_el, "resource"):
            files = [
                file_el.get("href")
                for file_el in _children(res_el, "file")
                if file_el.get("href")
            ]
            dependencies = [
                dep_el.get("identifierref")
                for dep_el in _children(res_el, "dependency")
                if dep_el.get("identifierref")
            ]
            resources.append(
                SCORMResource(
                    identifier=res_el.get("identifier", ""),
                    type=res_el.get("type") or "webcontent",
                    href=res_el.get("href") or None,
                    scormType=self._scorm_type(res_el),
                    files=files,
                    dependencies=dependencies or None,
                )
            )
        return resources

    def _scorm_type(self, res_el: ET.Element) -> str:
        raw = None
        for attribute in SCORM_TYPE_ATTRIBUTE_PROBES:
            raw = res_el.get(attribute)
            if raw:
                break
        else:
            # Unknown adlcp revision: match on local name only
            for key, value in res_el.attrib.items():
                if _local_name(key).split(":")[-1].lower() == "scormtype":
                    raw = value
                    break

        if not raw:
            return "sco"
        value = raw.strip().lower()
        return value if value in ("sco", "asset") else "asset"

    def _parse_metadata(self, root: ET.Element) -> Optional[SCORMMetadata]:
        metadata_el = _first_child(root, "metadata")
        if metadata_el is None:
            return None
        return SCORMMetadata(
            schema=_child_text(metadata_el, "schema"),
            schemaVersion=_child_text(metadata_el, "schemaversion"),
        )

    # Launch resolution ----------------------------------------------------

    def get_launch_url(self, manifest: SCORMManifest) -> str:
        """
        Resolve the href of the first SCO in the default organization.

        Falls back to the first organization when ``defaultOrganization``
        does not match any organization.

        Raises:
            LaunchResolutionError: no organizations, no reachable SCO, or
                the SCO resource has no href
        """
        if not manifest.organizations:
            raise LaunchResolutionError("no organizations found in manifest")

        organization = next(
            (
                org
                for org in manifest.organizations
                if org.identifier == manifest.defaultOrganization
            ),
            manifest.organizations[0],
        )

        resources = {res.identifier: res for res in manifest.resources}
        item, resource = self._find_first_sco(organization.items, resources)
        if item is None:
            raise LaunchResolutionError(
                f"No launchable SCO found in organization {organization.identifier!r}"
            )
        if not resource.href:
            raise LaunchResolutionError(
                f"Resource {resource.identifier!r} for item "
                f"{item.identifier!r} has no href"
            )
        return resource.href

    def _find_first_sco(
        self, items: List[SCORMItem], resources: Dict[str, SCORMResource]
    ) -> Tuple[Optional[SCORMItem], Optional[SCORMResource]]:
        stack = list(reversed(items))
        while stack:
            item = stack.pop()
            resource = resources.get(item.resourceIdentifier or "")
            if resource is not None and resource.scormType == "sco":
                return item, resource
            stack.extend(reversed(item.children))
        return None, None


manifest_parser = SCORMManifestParser()


def parse_manifest(xml_text: Union[str, bytes]) -> ParsedManifest:
    return manifest_parser.parse_manifest(xml_text)


def get_launch_url(manifest: SCORMManifest) -> str:
    return manifest_parser.get_launch_url(manifest)
