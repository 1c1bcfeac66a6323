"""
Tests for the application store: dispatcher, persistence and the draft flow.
"""
import json

import pytest

from domain.models import UNTITLED_PLACE, AppState, DraftMode, Place, PlaceMeta
from services.app_store import (
    AddPlace,
    FinishCollecting,
    PlacesStore,
    RemovePlace,
    ResetNotConfirmedError,
    ResetState,
    SetCollecting,
    ToggleList,
    UpdatePlace,
)
from services.import_export import ImportFormatError, export_locations


def _persisted(storage):
    return json.loads(storage.read_raw())


class TestDraftFlow:
    def test_click_then_commit_creates_place(self, store, geocoder, storage):
        store.handle_map_click(40.0, -74.0)
        place = store.commit_draft()

        assert place.title == "Jersey City"
        assert place.meta.country == "USA"
        assert (place.lat, place.lng) == (40.0, -74.0)
        assert geocoder.calls == [(40.0, -74.0)]
        assert store.editor.mode == DraftMode.CLOSED
        assert _persisted(storage)["locations"][0]["id"] == place.id

    def test_commit_without_city_is_untitled(self, storage):
        store = PlacesStore.load(storage, geocoder=lambda lat, lng: PlaceMeta())
        store.handle_map_click(0.0, 0.0)
        place = store.commit_draft()
        assert place.title == UNTITLED_PLACE
        assert place.meta == PlaceMeta()

    def test_user_title_is_kept(self, store):
        store.handle_map_click(40.0, -74.0)
        store.update_draft(title="Grandma's house", notes="summers")
        place = store.commit_draft()
        assert place.title == "Grandma's house"
        assert place.notes == "summers"

    def test_click_outside_collecting_mode_is_ignored(self, store):
        store.dispatch(FinishCollecting())
        assert store.handle_map_click(1.0, 2.0) is None
        assert store.editor.mode == DraftMode.CLOSED

    def test_cancel_discards_draft(self, store, geocoder):
        store.handle_map_click(1.0, 2.0)
        store.cancel_draft()
        assert store.commit_draft() is None
        assert geocoder.calls == []
        assert len(store.places) == 0

    def test_edit_overwrites_fields_and_refreshes_meta(self, store, storage):
        store.dispatch(
            AddPlace(store.editor.open_create(40.0, -74.0), PlaceMeta(city="Old", country="Old"))
        )
        store.editor.cancel()
        original = store.places.locations[0]

        draft = store.start_edit(original.id)
        assert draft.mode == DraftMode.EDITING
        store.update_draft(title="", notes="new notes")
        updated = store.commit_draft()

        assert updated.id == original.id
        assert updated.created_at == original.created_at
        # edits store the title as given
        assert updated.title == ""
        assert updated.notes == "new notes"
        assert updated.meta.city == "Jersey City"
        assert len(store.places) == 1
        assert _persisted(storage)["locations"][0]["notes"] == "new notes"

    def test_edit_unknown_place_is_noop(self, store):
        assert store.start_edit("missing") is None
        assert store.editor.mode == DraftMode.CLOSED

    def test_edit_of_place_removed_meanwhile_commits_nothing(self, store):
        store.handle_map_click(1.0, 2.0)
        place = store.commit_draft()
        store.start_edit(place.id)
        store.dispatch(RemovePlace(place.id))
        assert store.commit_draft() is None
        assert len(store.places) == 0

    def test_stale_lookup_result_is_discarded(self, storage):
        holder = {}

        def racing_geocoder(lat, lng):
            # the user clicks elsewhere while the lookup is in flight
            holder["replacement"] = holder["store"].handle_map_click(5.0, 6.0)
            return PlaceMeta(city="Stale")

        store = PlacesStore.load(storage, geocoder=racing_geocoder)
        holder["store"] = store
        store.handle_map_click(1.0, 2.0)

        assert store.commit_draft() is None
        assert len(store.places) == 0
        assert store.editor.draft is holder["replacement"]

    def test_draft_edits_during_lookup_are_committed(self, storage):
        holder = {}

        def slow_geocoder(lat, lng):
            holder["store"].update_draft(title="typed while loading")
            assert holder["store"].editor.loading is True
            return PlaceMeta(city="City")

        store = PlacesStore.load(storage, geocoder=slow_geocoder)
        holder["store"] = store
        store.handle_map_click(1.0, 2.0)
        place = store.commit_draft()
        assert place.title == "typed while loading"

    def test_failing_geocoder_commits_without_meta(self, storage):
        def broken_geocoder(lat, lng):
            raise OSError("cache unavailable")

        store = PlacesStore.load(storage, geocoder=broken_geocoder)
        store.handle_map_click(1.0, 2.0)
        place = store.commit_draft()

        assert place.title == UNTITLED_PLACE
        assert place.meta == PlaceMeta()
        assert store.editor.draft is None
        assert store.editor.loading is False
        assert _persisted(storage)["locations"][0]["id"] == place.id

    def test_draft_is_never_persisted(self, store, storage):
        store.handle_map_click(1.0, 2.0)
        store.dispatch(ToggleList())
        assert "draft" not in _persisted(storage)


class TestDispatcher:
    def test_every_mutation_is_persisted(self, store, storage):
        store.handle_map_click(1.0, 2.0)
        place = store.commit_draft()
        assert PlacesStore.load(storage).places.ids() == [place.id]

        store.dispatch(UpdatePlace(place.id, {"title": "renamed"}))
        assert storage.load().locations[0].title == "renamed"

        store.dispatch(RemovePlace(place.id))
        assert storage.load().locations == []

    def test_finish_collecting(self, store, storage):
        store.dispatch(FinishCollecting())
        assert store.state.is_collecting is False
        assert store.state.show_list is False
        assert _persisted(storage)["isCollecting"] is False

    def test_toggle_list_and_set_collecting(self, store, storage):
        assert store.dispatch(ToggleList()) is False
        assert store.dispatch(ToggleList()) is True
        store.dispatch(SetCollecting(False))
        assert _persisted(storage) == {"locations": [], "isCollecting": False, "showList": True}

    def test_unknown_action(self, store):
        with pytest.raises(TypeError):
            store.dispatch(object())

    def test_load_restores_persisted_state(self, storage):
        storage.save(AppState(locations=[Place(id="a", lat=1.0, lng=2.0)], is_collecting=False, show_list=True))
        store = PlacesStore.load(storage)
        assert store.places.ids() == ["a"]
        assert store.state.is_collecting is False


class TestReset:
    def test_reset_requires_confirmation(self, store, storage):
        store.handle_map_click(1.0, 2.0)
        store.commit_draft()
        with pytest.raises(ResetNotConfirmedError):
            store.dispatch(ResetState(confirmed=False))
        assert len(store.places) == 1
        assert len(_persisted(storage)["locations"]) == 1

    def test_reset_clears_state_and_slot(self, store, storage):
        store.handle_map_click(1.0, 2.0)
        store.commit_draft()
        store.dispatch(FinishCollecting())
        store.reset(confirmed=True)

        assert len(store.places) == 0
        assert store.state.is_collecting is True
        assert store.state.show_list is True
        assert store.editor.draft is None
        assert storage.read_raw() is None


class TestImportExport:
    def test_import_replaces_locations_and_switches_mode(self, store, storage):
        doc = json.dumps([{"id": "x", "lat": 1.0, "lng": 2.0, "title": "X", "notes": "", "createdAt": 1}])
        imported = store.import_document(doc)
        assert [p.id for p in imported] == ["x"]
        assert store.state.is_collecting is False
        assert store.state.show_list is False
        assert _persisted(storage)["locations"][0]["title"] == "X"

    def test_import_object_leaves_state_unchanged(self, store, storage):
        store.handle_map_click(1.0, 2.0)
        place = store.commit_draft()
        before = storage.read_raw()

        with pytest.raises(ImportFormatError) as exc:
            store.import_document('{"locations": []}')

        assert str(exc.value) == "Invalid file format."
        assert store.places.ids() == [place.id]
        assert store.state.is_collecting is True
        assert storage.read_raw() == before

    def test_import_invalid_json_leaves_state_unchanged(self, store):
        store.handle_map_click(1.0, 2.0)
        store.commit_draft()
        with pytest.raises(ImportFormatError) as exc:
            store.import_document("not json at all")
        assert str(exc.value) == "Could not parse JSON."
        assert len(store.places) == 1

    def test_export_then_import_round_trips(self, store):
        for lat in (1.0, 2.0, 3.0):
            store.handle_map_click(lat, lat)
            store.update_draft(notes=f"note {lat}")
            store.commit_draft()
        exported = export_locations(list(store.places))
        before = [p.to_dict() for p in store.places]

        store.reset(confirmed=True)
        store.import_document(exported)

        assert [p.to_dict() for p in store.places] == before
