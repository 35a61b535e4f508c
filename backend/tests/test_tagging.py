"""
Tests for part tag classification.
"""

from db.catalog_queries import insert_diagram, insert_parts
from db.sql import execute_sql, run_sql_scalar
from models.catalog import Diagram, Part
from services.tagging import RULES, classify, regenerate_tags


class TestClassify:

    def test_group_id_gives_system_tag(self):
        tags = classify("GASKET,ROCKER COVER", "engine")
        assert {"engine", "gasket", "wear-part", "cover"} <= tags

    def test_exact_tag_set(self):
        assert classify("BOLT,FLANGE", "body") == {"body", "fastener"}

    def test_position_and_maintenance(self):
        tags = classify("PAD SET,FR BRAKE", "brake")
        assert {"brakes", "pad-shoe", "maintenance-item", "wear-part", "front"} <= tags

    def test_case_insensitive(self):
        assert "gasket" in classify("gasket,oil pan", "lubrication")

    def test_word_boundaries(self):
        # "NUTS" inside another word must not count as a fastener
        assert "fastener" not in classify("WALNUTSHELL", "")

    def test_empty_input(self):
        assert classify(None, None) == set()

    def test_rule_display_name(self):
        names = {rule.tag_id: rule.name for rule in RULES}
        assert names["wheels-tires"] == "Wheels Tires"


class TestRegenerateTags:

    def seed(self, session):
        insert_diagram(session, Diagram(
            id="engine/rocker-cover", group_id="engine", subgroup_id=None,
            name="Rocker Cover", image_url=None, source_url="https://example.com/",
        ))
        insert_parts(session, [
            Part(part_number="MD1", diagram_id="engine/rocker-cover", group_id="engine",
                 detail_page_id="148", pnc="11260", description="GASKET,ROCKER COVER"),
            Part(part_number="MD2", diagram_id="engine/rocker-cover", group_id="engine",
                 detail_page_id="148", pnc="11270", description="BOLT,FLANGE"),
        ])
        session.commit()

    def test_counts_and_rows(self, session):
        self.seed(session)

        counts = regenerate_tags(session, batch_size=2)

        assert counts == {"engine": 2, "gasket": 1, "wear-part": 1, "cover": 1, "fastener": 1}
        assert run_sql_scalar(session, "SELECT COUNT(*) FROM tags") == len(RULES)
        assert run_sql_scalar(session, "SELECT COUNT(*) FROM tags_to_parts") == 6
        assert run_sql_scalar(session, "SELECT category FROM tags WHERE id = 'front'") == "position"

    def test_rebuild_replaces_previous_assignments(self, session):
        self.seed(session)
        regenerate_tags(session)

        counts = regenerate_tags(session)

        assert sum(counts.values()) == 6
        assert run_sql_scalar(session, "SELECT COUNT(*) FROM tags_to_parts") == 6

    def test_deleting_a_part_drops_its_tags(self, session):
        self.seed(session)
        regenerate_tags(session)

        execute_sql(session, "DELETE FROM parts WHERE part_number = 'MD2'")
        session.commit()

        assert run_sql_scalar(session, "SELECT COUNT(*) FROM tags_to_parts") == 4
