"""
Tests for the SCORM manifest parser: version detection, tree extraction
and launch URL resolution.
"""

import pytest

from conftest import SCORM_12_MANIFEST, SCORM_2004_MANIFEST
from scorm_backend.models.scorm import (
    SCORMItem,
    SCORMManifest,
    SCORMOrganization,
    SCORMResource,
)
from scorm_backend.services.manifest_parser import (
    LaunchResolutionError,
    ManifestParseError,
    SCORMManifestParser,
    get_launch_url,
    parse_manifest,
)

parser = SCORMManifestParser()


def _manifest(body: str, attrs: str = "", metadata: str = "") -> str:
    return (
        f'<manifest identifier="m1" xmlns="http://www.imsglobal.org/xsd/imscp_v1p1" {attrs}>'
        f"{metadata}{body}</manifest>"
    )


class TestParseManifest:
    """Parsing of complete manifests"""

    def test_parses_scorm_12_manifest(self):
        result = parser.parse_manifest(SCORM_12_MANIFEST)
        manifest = result.manifest

        assert result.version == "1.2"
        assert manifest.identifier == "test-course-12"
        assert manifest.version == "1.0"
        assert manifest.defaultOrganization == "org-1"
        assert len(manifest.organizations) == 1
        assert manifest.organizations[0].title == "SCORM 1.2 Test Course"
        assert len(manifest.organizations[0].items) == 2
        assert len(manifest.resources) == 2

    def test_parses_scorm_2004_manifest(self):
        result = parser.parse_manifest(SCORM_2004_MANIFEST)
        manifest = result.manifest

        assert result.version == "2004"
        assert manifest.identifier == "test-course-2004"
        assert manifest.organizations[0].title == "SCORM 2004 Course"
        assert len(manifest.organizations[0].items) == 1
        assert manifest.resources[0].files == [
            "module_a/start.html",
            "module_a/styles.css",
        ]

    def test_accepts_bytes_input(self):
        result = parser.parse_manifest(SCORM_12_MANIFEST.encode("utf-8"))
        assert result.manifest.identifier == "test-course-12"

    def test_ignores_leading_byte_order_mark(self):
        text = "\ufeff" + SCORM_2004_MANIFEST.split("?>", 1)[1].lstrip()
        assert parser.parse_manifest(text).version == "2004"

    def test_malformed_xml_raises(self):
        with pytest.raises(ManifestParseError):
            parser.parse_manifest("<invalid>")

    def test_missing_manifest_root_raises(self):
        with pytest.raises(ManifestParseError, match="No <manifest> element"):
            parser.parse_manifest('<?xml version="1.0"?><root></root>')

    def test_items_carry_identifiers_and_resource_refs(self):
        items = parser.parse_manifest(SCORM_12_MANIFEST).manifest.organizations[0].items

        assert items[0].identifier == "item-1"
        assert items[0].title == "Lesson 1"
        assert items[0].resourceIdentifier == "res-1"
        assert items[1].identifier == "item-2"
        assert items[0].children == []

    def test_resources_carry_type_href_and_sco_type(self):
        resource = parser.parse_manifest(SCORM_12_MANIFEST).manifest.resources[0]

        assert resource.identifier == "res-1"
        assert resource.type == "webcontent"
        assert resource.href == "lesson1/index.html"
        assert resource.scormType == "sco"
        assert resource.dependencies is None

    def test_metadata_schema_and_version(self):
        metadata = parser.parse_manifest(SCORM_12_MANIFEST).manifest.metadata

        assert metadata.schema_ == "ADL SCORM"
        assert metadata.schemaVersion == "1.2"

    def test_metadata_serializes_under_schema_key(self):
        manifest = parser.parse_manifest(SCORM_12_MANIFEST).manifest
        as_json = manifest.to_json()

        assert as_json["metadata"] == {"schema": "ADL SCORM", "schemaVersion": "1.2"}
        assert SCORMManifest.model_validate(as_json) == manifest

    def test_parsing_is_deterministic(self):
        assert parser.parse_manifest(SCORM_2004_MANIFEST) == parser.parse_manifest(
            SCORM_2004_MANIFEST
        )

    def test_module_level_helpers(self):
        parsed = parse_manifest(SCORM_2004_MANIFEST)
        assert get_launch_url(parsed.manifest) == "module_a/start.html"


class TestDefaults:
    """Missing attributes and elements fall back to documented defaults"""

    def test_missing_identifier_and_titles(self):
        xml = (
            '<manifest><organizations><organization identifier="o">'
            '<item identifier="i" identifierref="r"/></organization></organizations>'
            '<resources><resource identifier="r" href="a.html"/></resources></manifest>'
        )
        manifest = parser.parse_manifest(xml).manifest

        assert manifest.identifier == "unknown"
        assert manifest.organizations[0].title == "Untitled"
        assert manifest.organizations[0].items[0].title == "Untitled"
        assert manifest.defaultOrganization == ""
        assert manifest.metadata is None

    def test_resource_without_type_or_scorm_type(self):
        xml = _manifest('<resources><resource identifier="r" href="a.html"/></resources>')
        resource = parser.parse_manifest(xml).manifest.resources[0]

        assert resource.type == "webcontent"
        assert resource.scormType == "sco"
        assert resource.files == []

    def test_unknown_scorm_type_is_asset(self):
        xml = _manifest(
            '<resources><resource identifier="r" href="a.html" '
            'adlcp:scormType="widget"/></resources>',
            attrs='xmlns:adlcp="http://www.adlnet.org/xsd/adlcp_v1p3"',
        )
        assert parser.parse_manifest(xml).manifest.resources[0].scormType == "asset"

    def test_scorm_type_from_unrecognised_adlcp_namespace(self):
        xml = _manifest(
            '<resources><resource identifier="r" href="a.html" '
            'x:SCORMTYPE="Asset"/></resources>',
            attrs='xmlns:x="http://example.com/custom"',
        )
        assert parser.parse_manifest(xml).manifest.resources[0].scormType == "asset"

    def test_dependencies_are_collected(self):
        xml = _manifest(
            "<resources>"
            '<resource identifier="r" href="a.html">'
            '<dependency identifierref="common"/><dependency identifierref="lib"/>'
            "</resource></resources>"
        )
        resource = parser.parse_manifest(xml).manifest.resources[0]
        assert resource.dependencies == ["common", "lib"]


class TestVersionDetection:
    """Version rules are applied in priority order"""

    def test_2004_namespace_declaration(self):
        xml = _manifest("", attrs='xmlns:adlseq="http://www.adlnet.org/xsd/adlseq_v1p3"')
        assert parser.parse_manifest(xml).version == "2004"

    def test_2004_namespace_wins_over_12_schemaversion(self):
        xml = _manifest(
            "",
            attrs='xmlns:adlcp="http://www.adlnet.org/xsd/adlcp_v1p3"',
            metadata="<metadata><schemaversion>1.2</schemaversion></metadata>",
        )
        assert parser.parse_manifest(xml).version == "2004"

    @pytest.mark.parametrize(
        "schemaversion", ["2004 3rd Edition", "2004 4th Edition", "CAM 1.3"]
    )
    def test_2004_schemaversion(self, schemaversion):
        xml = _manifest(
            "", metadata=f"<metadata><schemaversion>{schemaversion}</schemaversion></metadata>"
        )
        assert parser.parse_manifest(xml).version == "2004"

    def test_12_schemaversion(self):
        xml = _manifest("", metadata="<metadata><schemaversion>1.2</schemaversion></metadata>")
        assert parser.parse_manifest(xml).version == "1.2"

    def test_12_root_namespace(self):
        xml = '<manifest identifier="m" xmlns="http://www.imsproject.org/xsd/imscp_rootv1p1p2"/>'
        assert parser.parse_manifest(xml).version == "1.2"

    def test_no_signal_defaults_to_12(self):
        assert parser.parse_manifest('<manifest identifier="m"/>').version == "1.2"


class TestNestedItems:
    """Item trees and sequencing"""

    NESTED = _manifest(
        '<organizations default="o1"><organization identifier="o1"><title>Org</title>'
        '<item identifier="chapter"><title>Chapter</title>'
        '<item identifier="section"><title>Section</title>'
        '<item identifier="leaf" identifierref="sco"><title>Leaf</title>'
        '<adlcp:completionThreshold minProgressMeasure="0.75"/></item>'
        "</item></item>"
        '<item identifier="second" identifierref="sco2"><title>Second</title></item>'
        "</organization></organizations>"
        "<resources>"
        '<resource identifier="sco" href="deep/leaf.html" adlcp:scormType="sco"/>'
        '<resource identifier="sco2" href="second.html" adlcp:scormType="sco"/>'
        "</resources>",
        attrs='xmlns:adlcp="http://www.adlnet.org/xsd/adlcp_v1p3"',
    )

    def test_nested_structure_is_preserved(self):
        org = parser.parse_manifest(self.NESTED).manifest.organizations[0]

        assert [item.identifier for item in org.items] == ["chapter", "second"]
        chapter = org.items[0]
        assert chapter.resourceIdentifier is None
        assert chapter.children[0].identifier == "section"
        leaf = chapter.children[0].children[0]
        assert leaf.identifier == "leaf"
        assert leaf.resourceIdentifier == "sco"

    def test_completion_threshold_attribute(self):
        org = parser.parse_manifest(self.NESTED).manifest.organizations[0]
        leaf = org.items[0].children[0].children[0]

        assert leaf.sequencing.completionThreshold == 0.75
        assert org.items[1].sequencing is None

    def test_completion_threshold_text_is_clamped(self):
        xml = _manifest(
            '<organizations><organization identifier="o">'
            '<item identifier="i"><adlcp:completionThreshold>1.5</adlcp:completionThreshold></item>'
            "</organization></organizations>",
            attrs='xmlns:adlcp="http://www.adlnet.org/xsd/adlcp_v1p3"',
        )
        item = parser.parse_manifest(xml).manifest.organizations[0].items[0]
        assert item.sequencing.completionThreshold == 1.0

    def test_launch_url_finds_deepest_first_sco(self):
        manifest = parser.parse_manifest(self.NESTED).manifest
        assert parser.get_launch_url(manifest) == "deep/leaf.html"

    def test_deep_nesting_does_not_recurse(self):
        depth = 2000
        body = "".join(f'<item identifier="i{n}">' for n in range(depth))
        body += "</item>" * depth
        xml = _manifest(
            f'<organizations><organization identifier="o">{body}</organization></organizations>'
        )
        org = parser.parse_manifest(xml).manifest.organizations[0]

        node = org.items[0]
        levels = 1
        while node.children:
            node = node.children[0]
            levels += 1
        assert levels == depth


class TestGetLaunchUrl:
    """Launch resolution over default and fallback organizations"""

    def test_first_sco_of_scorm_12(self):
        manifest = parser.parse_manifest(SCORM_12_MANIFEST).manifest
        assert parser.get_launch_url(manifest) == "lesson1/index.html"

    def test_first_sco_of_scorm_2004(self):
        manifest = parser.parse_manifest(SCORM_2004_MANIFEST).manifest
        assert parser.get_launch_url(manifest) == "module_a/start.html"

    def test_no_organizations_raises(self):
        manifest = SCORMManifest(identifier="test")
        with pytest.raises(LaunchResolutionError, match="no organizations"):
            parser.get_launch_url(manifest)

    def test_default_organization_is_used(self):
        manifest = SCORMManifest(
            identifier="m",
            defaultOrganization="second",
            organizations=[
                SCORMOrganization(
                    identifier="first",
                    title="First",
                    items=[SCORMItem(identifier="a", title="A", resourceIdentifier="r1")],
                ),
                SCORMOrganization(
                    identifier="second",
                    title="Second",
                    items=[SCORMItem(identifier="b", title="B", resourceIdentifier="r2")],
                ),
            ],
            resources=[
                SCORMResource(identifier="r1", href="first.html"),
                SCORMResource(identifier="r2", href="second.html"),
            ],
        )
        assert parser.get_launch_url(manifest) == "second.html"

    def test_unknown_default_falls_back_to_first_organization(self):
        manifest = SCORMManifest(
            identifier="m",
            defaultOrganization="missing",
            organizations=[
                SCORMOrganization(
                    identifier="first",
                    title="First",
                    items=[SCORMItem(identifier="a", title="A", resourceIdentifier="r1")],
                )
            ],
            resources=[SCORMResource(identifier="r1", href="first.html")],
        )
        assert parser.get_launch_url(manifest) == "first.html"

    def test_assets_are_skipped(self):
        manifest = SCORMManifest(
            identifier="m",
            organizations=[
                SCORMOrganization(
                    identifier="o",
                    title="O",
                    items=[
                        SCORMItem(identifier="a", title="A", resourceIdentifier="asset"),
                        SCORMItem(identifier="b", title="B", resourceIdentifier="sco"),
                    ],
                )
            ],
            resources=[
                SCORMResource(identifier="asset", href="intro.pdf", scormType="asset"),
                SCORMResource(identifier="sco", href="sco.html"),
            ],
        )
        assert parser.get_launch_url(manifest) == "sco.html"

    def test_no_sco_raises(self):
        manifest = SCORMManifest(
            identifier="m",
            organizations=[
                SCORMOrganization(
                    identifier="o",
                    title="O",
                    items=[SCORMItem(identifier="a", title="A", resourceIdentifier="missing")],
                )
            ],
        )
        with pytest.raises(LaunchResolutionError, match="No launchable SCO"):
            parser.get_launch_url(manifest)

    def test_sco_without_href_raises(self):
        manifest = SCORMManifest(
            identifier="m",
            organizations=[
                SCORMOrganization(
                    identifier="o",
                    title="O",
                    items=[SCORMItem(identifier="a", title="A", resourceIdentifier="r")],
                )
            ],
            resources=[SCORMResource(identifier="r")],
        )
        with pytest.raises(LaunchResolutionError, match="has no href"):
            parser.get_launch_url(manifest)
