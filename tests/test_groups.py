"""
Tests for entity grouping, consensus, connectivity and collapse
"""
import pytest

from owner_resolution.core.comparator import ComparisonResult, SimilarityComparator
from owner_resolution.core.entities import AggregateHousehold, SourceRecord, SourceTag
from owner_resolution.core.groups import (
    CollapseLabel,
    EntityGroup,
    EntityGroupDatabase,
    GroupBuilder,
    entity_key,
)
from owner_resolution.core.name_classifier import NameClassifier
from owner_resolution.core.overrides import OverrideRuleSet

PO_BOX_12 = "PO BOX 12, BLOCK ISLAND, RI 02807"


class ScriptedComparator(SimilarityComparator):
    """Returns preset overall scores keyed by record id pair"""

    def __init__(self, scores):
        super().__init__()
        self.scores = {frozenset(pair): score for pair, score in scores.items()}

    def compare(self, a, b):
        overall = self.scores.get(frozenset((a.record_id, b.record_id)), 0.0)
        return ComparisonResult(overall=overall, components={"name": 0.0, "contactInfo": 0.0})


def make_entity(record_id, owner_name="", source=SourceTag.PRIMARY, **kwargs):
    record = SourceRecord(record_id=record_id, owner_name=owner_name, source=source, **kwargs)
    return NameClassifier().classify_record(record)


def keyed(*entities):
    return {entity_key(e): e for e in entities}


class TestGroupBuilder:
    """Test cases for GroupBuilder.build"""

    def setup_method(self):
        """Setup test fixtures"""
        self.builder = GroupBuilder()

    def test_donor_joins_primary_owner(self):
        """Test a donor joins the matching property owner"""
        owner = make_entity("p1", "SMITH, JOHN", fire_number="1", mailing_address=PO_BOX_12)
        donor = make_entity(
            "s1", source=SourceTag.SECONDARY, first_name="John", last_name="Smith",
            mailing_address=PO_BOX_12,
        )
        db = self.builder.build(keyed(owner, donor))

        assert len(db) == 1
        group = db[0]
        assert group.founding_member_key == "PRIMARY:1"
        assert group.member_keys == ["PRIMARY:1", "SECONDARY:"]
        assert group.has_foreign_source_member
        assert group.construction_phase == 2

    def test_households_seed_first(self):
        """Test households found groups before individuals"""
        person = make_entity("p1", "SMITH, JOHN", fire_number="1", mailing_address=PO_BOX_12)
        household = make_entity("p2", "SMITH JOHN & MARY", fire_number="2", mailing_address=PO_BOX_12)
        db = self.builder.build(keyed(person, household))

        assert len(db) == 1
        assert db[0].founding_member_key == "PRIMARY:2"
        assert db[0].construction_phase == 1
        assert "PRIMARY:1" in db[0].member_keys

    def test_each_key_in_at_most_one_group(self):
        """Test every key sits in exactly one group"""
        entities = keyed(
            make_entity("p1", "SMITH, JOHN", fire_number="1", mailing_address=PO_BOX_12),
            make_entity("p2", "SMITH, JOHN", fire_number="2", mailing_address=PO_BOX_12),
            make_entity("p3", "JONES, MARY", fire_number="3", mailing_address="100 MAIN ST, WESTERLY, RI 02891"),
            make_entity("p4", "ACME HOLDINGS LLC", fire_number="4"),
        )
        db = self.builder.build(entities)

        seen = [key for group in db for key in group.member_keys]
        assert len(seen) == len(set(seen))
        assert set(seen) == set(entities)
        assert db.find_group_by_member("PRIMARY:2").index == db.find_group_by_member("PRIMARY:1").index
        assert db.find_group_by_member("PRIMARY:4").construction_phase == 3

    def test_build_is_deterministic(self):
        """Test identical input builds identical groups"""
        def entities():
            return keyed(
                make_entity("p1", "SMITH, JOHN", fire_number="1", mailing_address=PO_BOX_12),
                make_entity("p2", "JONES, MARY", fire_number="2"),
                make_entity("s1", source=SourceTag.SECONDARY, first_name="Mary", last_name="Jones"),
            )

        first = GroupBuilder().build(entities()).to_dict()
        second = GroupBuilder().build(entities()).to_dict()
        assert first == second

    def test_near_miss_in_primary_phase(self):
        """Test near matches are recorded during seeding"""
        builder = GroupBuilder(comparator=ScriptedComparator({("p1", "p2"): 0.88}))
        db = builder.build(keyed(
            make_entity("p1", "SMITH, JOHN", fire_number="1"),
            make_entity("p2", "SMITH, JON", fire_number="2"),
        ))

        assert len(db) == 2
        assert db[0].near_miss_keys == ["PRIMARY:2"]
        assert db[1].member_keys == ["PRIMARY:2"]

    def test_leftover_secondary_joins_consensus(self):
        """Test leftover secondaries are placed against consensus"""
        builder = GroupBuilder(comparator=ScriptedComparator({("s1", "s2"): 0.95, ("s1", "s3"): 0.88}))
        s1 = make_entity("s1", source=SourceTag.SECONDARY, first_name="A", last_name="B", pid="1")
        s2 = make_entity("s2", source=SourceTag.SECONDARY, first_name="A", last_name="B", pid="2")
        s3 = make_entity("s3", source=SourceTag.SECONDARY, first_name="A", last_name="C", pid="3")
        db = builder.build(keyed(s1, s2, s3))

        assert len(db) == 2
        assert db[0].member_keys == ["SECONDARY:1", "SECONDARY:2"]
        assert db[0].construction_phase == 4
        # A near miss is noted on the closest group and still gets a group of its own
        assert db[0].near_miss_keys == ["SECONDARY:3"]
        assert db[1].member_keys == ["SECONDARY:3"]
        assert db.find_group_by_member("SECONDARY:3").index == 1

    def test_tie_goes_to_lower_group_index(self):
        """Test equal scores favour the older group"""
        builder = GroupBuilder(comparator=ScriptedComparator({("s1", "s3"): 0.95, ("s2", "s3"): 0.95}))
        entities = keyed(*[
            make_entity(rid, source=SourceTag.SECONDARY, first_name="A", last_name=rid, pid=rid)
            for rid in ("s1", "s2", "s3")
        ])
        db = builder.build(entities)

        assert db[0].member_keys == ["SECONDARY:s1", "SECONDARY:s3"]
        assert db[1].member_keys == ["SECONDARY:s2"]

    def test_force_exclude_keeps_owners_apart(self):
        """Test force-excluded owners never share a group"""
        entities = keyed(
            make_entity("p1", "SMITH, JOHN", fire_number="1", mailing_address=PO_BOX_12),
            make_entity("p2", "SMITH, JOHN", fire_number="2", mailing_address=PO_BOX_12),
        )
        overrides = OverrideRuleSet.from_dict({
            "force_exclude": [{"defective_key": "PRIMARY:2", "other_key": "PRIMARY:1"}],
        })
        db = GroupBuilder(overrides=overrides).build(entities)

        assert len(db) == 2
        assert db[0].near_miss_keys == []

    def test_force_match_joins_dissimilar_owners(self):
        """Test force-matched owners share a group"""
        entities = keyed(
            make_entity("p1", "SMITH, JOHN", fire_number="1", mailing_address=PO_BOX_12),
            make_entity("p2", "JONES, MARY", fire_number="2", mailing_address="100 MAIN ST, WESTERLY, RI 02891"),
        )
        overrides = OverrideRuleSet.from_dict({
            "force_match": [{"key1": "PRIMARY:1", "key2": "PRIMARY:2"}],
        })
        db = GroupBuilder(overrides=overrides).build(entities)

        assert len(db) == 1
        assert db[0].member_keys == ["PRIMARY:1", "PRIMARY:2"]
        assert overrides.stats.forced_matches_applied == 1

    def test_excluded_secondary_skips_group(self):
        """Test an excluded secondary looks elsewhere"""
        builder = GroupBuilder(
            comparator=ScriptedComparator({("s1", "s3"): 0.99, ("s2", "s3"): 0.95}),
            overrides=OverrideRuleSet.from_dict({
                "force_exclude": [{"defective_key": "SECONDARY:s3", "other_key": "SECONDARY:s1"}],
            }),
        )
        entities = keyed(*[
            make_entity(rid, source=SourceTag.SECONDARY, first_name="A", last_name=rid, pid=rid)
            for rid in ("s1", "s2", "s3")
        ])
        db = builder.build(entities)

        assert db.find_group_by_member("SECONDARY:s3").index == 1

    def test_every_entity_lands_in_a_group(self):
        """Test no entity is left out of the groups, near misses included"""
        builder = GroupBuilder(comparator=ScriptedComparator({("p1", "s1"): 0.88}))
        entities = keyed(
            make_entity("p1", "SMITH, JOHN", fire_number="1"),
            make_entity("s1", source=SourceTag.SECONDARY, first_name="Jon", last_name="Smith", pid="9"),
        )
        db = builder.build(entities)

        members = [key for group in db for key in group.member_keys]
        assert sorted(members) == sorted(entities)
        assert db[0].near_miss_keys == ["SECONDARY:9"]

    def test_force_match_between_secondaries(self):
        """Test forced partners share a group even when placed after the primary phases"""
        overrides = OverrideRuleSet.from_dict({
            "force_match": [{"key1": "SECONDARY:1", "key2": "SECONDARY:2"}],
        })
        builder = GroupBuilder(comparator=ScriptedComparator({}), overrides=overrides)
        db = builder.build(keyed(
            make_entity("s1", source=SourceTag.SECONDARY, first_name="Ann", last_name="Lee", pid="1"),
            make_entity("s2", source=SourceTag.SECONDARY, first_name="Bob", last_name="Ray", pid="2"),
        ))

        assert len(db) == 1
        assert db[0].member_keys == ["SECONDARY:1", "SECONDARY:2"]
        assert overrides.stats.forced_matches_applied == 1

    def test_secondary_follows_forced_partner_into_group(self):
        """Test a secondary joins the group already holding its forced partner"""
        overrides = OverrideRuleSet.from_dict({
            "force_match": [{"key1": "PRIMARY:2", "key2": "SECONDARY:9"}],
        })
        builder = GroupBuilder(comparator=ScriptedComparator({("p1", "p2"): 0.95}), overrides=overrides)
        db = builder.build(keyed(
            make_entity("p1", "SMITH, JOHN", fire_number="1"),
            make_entity("p2", "SMITH, JON", fire_number="2"),
            make_entity("s1", source=SourceTag.SECONDARY, first_name="Ann", last_name="Lee", pid="9"),
        ))

        assert len(db) == 1
        assert db[0].member_keys == ["PRIMARY:1", "PRIMARY:2", "SECONDARY:9"]

    @pytest.mark.parametrize("policy, member, yielded", [
        ("DEFECTIVE_YIELDS", "PRIMARY:3", "PRIMARY:2"),
        ("OTHER_YIELDS", "PRIMARY:2", "PRIMARY:3"),
        ("USE_SIMILARITY", "PRIMARY:3", "PRIMARY:2"),
    ])
    def test_conflict_policy_picks_who_yields(self, policy, member, yielded):
        """Test two excluded matches of one seed are settled by on_conflict"""
        overrides = OverrideRuleSet.from_dict({
            "force_exclude": [{"defective_key": "PRIMARY:2", "other_key": "PRIMARY:3", "on_conflict": policy}],
        })
        builder = GroupBuilder(
            comparator=ScriptedComparator({("p1", "p2"): 0.95, ("p1", "p3"): 0.97}),
            overrides=overrides,
        )
        db = builder.build(keyed(
            make_entity("p1", "SMITH, JOHN", fire_number="1"),
            make_entity("p2", "SMITH, JON", fire_number="2"),
            make_entity("p3", "SMYTH, JOHN", fire_number="3"),
        ))

        assert db[0].member_keys == ["PRIMARY:1", member]
        assert db.find_group_by_member(yielded).index == 1
        assert overrides.stats.exclusions_applied >= 1

    def test_progress_reported_when_interval_is_crossed(self):
        """Test progress fires each time assignments pass an interval boundary"""
        calls = []
        builder = GroupBuilder(
            comparator=ScriptedComparator({("p1", "p2"): 0.95, ("p1", "p3"): 0.95}),
            progress=lambda stage, done, total: calls.append((stage, done, total)),
            progress_interval=2,
        )
        builder.build(keyed(*[
            make_entity(f"p{i}", "SMITH, JOHN", fire_number=str(i)) for i in range(1, 6)
        ]))

        assert calls == [("groups", 3, 5), ("groups", 4, 5), ("groups", 5, 5)]

    def test_progress_reported(self):
        """Test the final progress report"""
        calls = []
        builder = GroupBuilder(progress=lambda stage, done, total: calls.append((stage, done, total)))
        builder.build(keyed(make_entity("p1", "SMITH, JOHN", fire_number="1")))
        assert calls[-1] == ("groups", 1, 1)


class TestConsensus:
    """Test cases for EntityGroup consensus"""

    def setup_method(self):
        """Setup test fixtures"""
        self.owner = make_entity("p1", "SMITH, JOHN", fire_number="1", mailing_address=PO_BOX_12)
        self.donor = make_entity(
            "s1", source=SourceTag.SECONDARY, first_name="John", last_name="Smith",
            email="js@example.org", pid="9",
        )
        self.stranger = make_entity("p9", "JONES, MARY", fire_number="9", phone="401-555-0100")
        self.entities = keyed(self.owner, self.donor, self.stranger)
        self.group = EntityGroup(index=0, founding_member_key="PRIMARY:1", member_keys=["PRIMARY:1", "SECONDARY:9"])

    def test_founder_values_win_and_gaps_are_filled(self):
        """Test founder values win and gaps are filled"""
        consensus = self.group.build_consensus(self.entities)

        assert consensus.name.full_name == self.owner.name.full_name
        assert consensus.contact_info.secondary_addresses[0].sec_unit_num == "12"
        assert consensus.contact_info.email == "js@example.org"
        assert consensus is not self.owner

    def test_near_misses_do_not_contribute(self):
        """Test near misses stay out of the consensus"""
        self.group.add_near_miss("PRIMARY:9")
        consensus = self.group.build_consensus(self.entities)
        assert consensus.contact_info.phone == ""

    def test_consensus_is_cached_until_members_change(self):
        """Test consensus caching"""
        first = self.group.build_consensus(self.entities)
        assert self.group.build_consensus(self.entities) is first

        self.group.add_member("PRIMARY:9")
        rebuilt = self.group.build_consensus(self.entities)
        assert rebuilt is not first
        assert rebuilt.contact_info.phone == "4015550100"

    def test_add_member_promotes_near_miss(self):
        """Test adding a near miss as member promotes it"""
        self.group.add_near_miss("PRIMARY:9")
        assert not self.group.add_near_miss("PRIMARY:1")
        assert self.group.add_member("PRIMARY:9")
        assert "PRIMARY:9" not in self.group.near_miss_keys
        assert not self.group.add_member("PRIMARY:9")

    def test_group_round_trip(self):
        """Test a group survives a dict round trip"""
        self.group.build_consensus(self.entities)
        data = self.group.to_dict()
        restored = EntityGroup.from_dict(data)

        assert restored.to_dict() == data
        assert set(data) == {
            "index", "founding_member_key", "member_keys", "near_miss_keys",
            "consensus_entity", "has_foreign_source_member", "construction_phase",
        }

    def test_database_stats_and_round_trip(self):
        """Test database stats and dict round trip"""
        self.group.update_foreign_source_flag()
        db = EntityGroupDatabase([self.group])
        stats = db.stats()

        assert stats["total_groups"] == 1
        assert stats["multi_member_groups"] == 1
        assert stats["groups_with_foreign_source_member"] == 1
        assert EntityGroupDatabase.from_dict(db.to_dict()).to_dict() == db.to_dict()


class TestConnectivityAndCollapse:
    """Test cases for contact-info connectivity and collapse"""

    def setup_method(self):
        """Setup test fixtures"""
        self.builder = GroupBuilder()
        self.owner = make_entity("p1", "SMITH, JOHN", fire_number="1", mailing_address=PO_BOX_12)
        self.donor = make_entity(
            "s1", source=SourceTag.SECONDARY, first_name="John", last_name="Smith",
            mailing_address=PO_BOX_12, pid="9",
        )
        self.elsewhere = make_entity("p3", "SMITH, JOHN", fire_number="3", mailing_address="5 ELM ST, BOSTON, MA 02101")
        self.household = make_entity("p4", "SMITH JOHN & MARY", fire_number="4", mailing_address=PO_BOX_12)
        self.entities = keyed(self.owner, self.donor, self.elsewhere, self.household)

    def group(self, *keys):
        return EntityGroup(index=0, founding_member_key=keys[0], member_keys=list(keys))

    def test_single_member_is_connected(self):
        """Test a single member is trivially connected"""
        group = self.group("PRIMARY:1")
        assert self.builder.is_contact_info_connected(group, self.entities)

        row = self.builder.collapse(group, self.entities)
        assert row.label == CollapseLabel.SINGLE
        assert not row.collapsed
        assert row.name_entity is self.owner

    def test_shared_mailing_address_is_connected(self):
        """Test a shared mailing address connects members"""
        group = self.group("PRIMARY:1", "SECONDARY:9")
        assert self.builder.is_contact_info_connected(group, self.entities)

        row = self.builder.collapse(group, self.entities)
        assert row.label == CollapseLabel.CONSOLIDATED_GROUP
        assert row.collapsed
        # Two individuals with matching names print the first
        assert row.name_entity is self.owner
        assert row.mailing_address == PO_BOX_12

    def test_unrelated_addresses_are_not_connected(self):
        """Test unrelated addresses leave the group disconnected"""
        group = self.group("PRIMARY:1", "PRIMARY:3")
        assert not self.builder.is_contact_info_connected(group, self.entities)

        row = self.builder.collapse(group, self.entities)
        assert row.label == CollapseLabel.CONSENSUS_COLLAPSE
        assert row.collapsed

    def test_missing_member_is_not_connected(self):
        """Test a missing member breaks connectivity"""
        group = self.group("PRIMARY:1", "PRIMARY:404")
        assert not self.builder.is_contact_info_connected(group, self.entities)

    def test_household_with_one_individual_prints_the_individual(self):
        """Test a household plus one individual prints the individual"""
        group = self.group("PRIMARY:4", "PRIMARY:1")
        row = self.builder.collapse(group, self.entities)
        assert row.name_entity is self.owner

    def test_three_individuals_print_consensus(self):
        """Test three individuals print the consensus"""
        group = self.group("PRIMARY:1", "SECONDARY:9", "PRIMARY:3")
        row = self.builder.collapse(group, self.entities)
        assert row.name_entity is row.consensus_entity

    def test_household_only_group_prints_consensus(self):
        """Test a lone household prints itself"""
        group = self.group("PRIMARY:4")
        row = self.builder.collapse(group, self.entities)
        assert isinstance(row.name_entity, AggregateHousehold)
        assert row.to_dict()["label"] == "SINGLE"
