"""
Unit tests for the schedule sync engine (showsync/engine/schedule_sync.py).

Strategy: every sync runs against the in-memory FakeStore from
tests/conftest.py, so the tests assert on the resulting schedule_items
table rather than on individual store calls. Time zone is passed in
explicitly where a wall-clock time is anchored on a date.
"""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch
from zoneinfo import ZoneInfo

import pytest

from showsync.bus.events import EventBus, EVENT_FLIGHT_SAVED, EVENT_SCHEDULE_SYNCED, EVENT_SCHEDULE_SYNC_FAILED
from showsync.engine import schedule_sync
from showsync.engine.schedule_sync import (
    SCHEDULE_TABLE,
    advancing_events,
    apply_schedule_move,
    catering_events,
    flight_events,
    lodging_events,
    register_handlers,
    remove_derived_events,
    resync_show,
    sync_advancing_session,
    sync_catering,
    sync_derived_events,
    sync_flight,
    sync_lodging,
    sync_travel_grid,
    tag_for,
    travel_grid_events,
)
from showsync.models import (
    AdvancingField, Catering, EventSpec, Flight, Lodging, SourceTag,
    SOURCE_CATERING, SOURCE_FIELDS, SOURCE_FLIGHTS, SOURCE_GRID, SOURCE_LODGING,
)

UTC = timezone.utc
BERLIN = ZoneInfo('Europe/Berlin')


def at(hour, minute=0, day=1):
    return datetime(2024, 5, day, hour, minute, tzinfo=UTC)


def items(store, **filters):
    return store.rows(SCHEDULE_TABLE, **filters)


def snapshot(store, tag):
    """Content of a tag's items without ids, order independent."""
    return sorted(
        (r['title'], r['starts_at'], r['ends_at'], r['item_type'])
        for r in items(store, source=tag.source, source_ref=tag.source_ref)
    )


@pytest.fixture
def flight():
    return Flight(
        id='f1', show_id='show1', direction='arrival', airline='American', flight_number='AA123',
        depart_airport_code='JFK', depart_at=at(10), arrival_airport_code='LHR', arrival_at=at(14),
    )


@pytest.fixture
def manual_item(fake_store):
    return fake_store.seed(SCHEDULE_TABLE, show_id='show1', title='Soundcheck', starts_at=at(16),
                           item_type='custom', auto_generated=False, source=None, source_ref=None)


# ---------------------------------------------------------------------------
# sync_derived_events
# ---------------------------------------------------------------------------

def test_sync_creates_tagged_auto_generated_items(fake_store):
    tag = SourceTag('advancing_catering', 'c1')
    result = sync_derived_events(tag, [EventSpec(title='Lunch', starts_at=at(12), item_type='catering')],
                                 'show1', store=fake_store)

    assert result.success
    assert result.created == 1
    row = items(fake_store)[0]
    assert row['source'] == 'advancing_catering'
    assert row['source_ref'] == 'c1'
    assert row['auto_generated'] is True
    assert row['show_id'] == 'show1'
    assert row['visibility'] == 'all'


def test_sync_twice_is_idempotent(fake_store, flight):
    tag = tag_for(SOURCE_FLIGHTS, flight.id)
    desired = flight_events(flight)

    sync_derived_events(tag, desired, 'show1', store=fake_store)
    first = snapshot(fake_store, tag)
    first_ids = {r['id'] for r in items(fake_store)}
    second_result = sync_derived_events(tag, desired, 'show1', store=fake_store)

    assert snapshot(fake_store, tag) == first
    assert len(items(fake_store)) == 1
    assert second_result.deleted == 1
    assert second_result.created == 1
    # replace, not patch: ids change
    assert {r['id'] for r in items(fake_store)}.isdisjoint(first_ids)


def test_sync_leaves_other_tags_and_manual_items_alone(fake_store, manual_item):
    other = fake_store.seed(SCHEDULE_TABLE, show_id='show1', title='Other flight', starts_at=at(8),
                            auto_generated=True, source=SOURCE_FLIGHTS, source_ref='f2')

    sync_derived_events(tag_for(SOURCE_FLIGHTS, 'f1'), [EventSpec(title='x', starts_at=at(9))],
                        'show1', store=fake_store)
    sync_derived_events(tag_for(SOURCE_FLIGHTS, 'f1'), [], 'show1', store=fake_store)

    remaining = {r['id']: r for r in items(fake_store)}
    assert remaining == {manual_item['id']: manual_item, other['id']: other}


def test_sync_skips_events_without_start(fake_store):
    desired = [
        EventSpec(title='ok', starts_at=at(9)),
        EventSpec(title='missing', starts_at=None),
        EventSpec(title='garbage', starts_at='not a date'),
    ]
    result = sync_derived_events(SourceTag('s', 'r'), desired, 'show1', store=fake_store)

    assert result.success
    assert result.created == 1
    assert result.skipped == 2
    assert [r['title'] for r in items(fake_store)] == ['ok']


def test_sync_accepts_iso_string_times(fake_store):
    sync_derived_events(SourceTag('s', 'r'), [EventSpec(title='x', starts_at='2024-05-01T10:00:00Z')],
                        'show1', store=fake_store)
    assert items(fake_store)[0]['starts_at'] == at(10)


def test_failed_delete_aborts_before_creating(fake_store):
    tag = SourceTag(SOURCE_FLIGHTS, 'f1')
    stale = fake_store.seed(SCHEDULE_TABLE, show_id='show1', title='old', starts_at=at(7),
                            auto_generated=True, source=tag.source, source_ref=tag.source_ref)
    fake_store.fail_delete_ids.add(stale['id'])

    result = sync_derived_events(tag, [EventSpec(title='new', starts_at=at(9))], 'show1', store=fake_store)

    assert not result.success
    assert result.failed_deletes == 1
    assert result.created == 0
    assert [r['title'] for r in items(fake_store)] == ['old']


def test_listing_failure_is_failure_result(fake_store):
    fake_store.fail_reads = True
    result = sync_derived_events(SourceTag('s', 'r'), [], 'show1', store=fake_store)
    assert not result.success
    assert 'connection refused' in result.error


def test_insert_failure_after_delete_reports_deleted(fake_store):
    tag = SourceTag('s', 'r')
    fake_store.seed(SCHEDULE_TABLE, show_id='show1', title='old', starts_at=at(7),
                    auto_generated=True, source='s', source_ref='r')
    fake_store.fail_inserts = True

    result = sync_derived_events(tag, [EventSpec(title='new', starts_at=at(9))], 'show1', store=fake_store)

    assert not result.success
    assert result.deleted == 1
    assert items(fake_store) == []


def test_events_without_show_id_fail_and_keep_existing_items(fake_store):
    tag = SourceTag(SOURCE_FLIGHTS, 'f1')
    kept = fake_store.seed(SCHEDULE_TABLE, show_id='show1', title='old', starts_at=at(7),
                           auto_generated=True, source=tag.source, source_ref=tag.source_ref)

    result = sync_derived_events(tag, [EventSpec(title='x', starts_at=at(9))], None, store=fake_store)

    assert not result.success
    assert result.deleted == 0
    assert [r['id'] for r in items(fake_store)] == [kept['id']]
    assert ('delete_by_id', SCHEDULE_TABLE) not in fake_store.calls


def test_unresolvable_events_without_show_id_only_clear_the_slice(fake_store):
    tag = SourceTag(SOURCE_FLIGHTS, 'f1')
    fake_store.seed(SCHEDULE_TABLE, show_id='show1', title='old', starts_at=at(7),
                    auto_generated=True, source=tag.source, source_ref=tag.source_ref)

    result = sync_derived_events(tag, [EventSpec(title='x', starts_at=None)], None, store=fake_store)

    assert result.success
    assert (result.deleted, result.skipped) == (1, 1)
    assert items(fake_store) == []


# ---------------------------------------------------------------------------
# Flights
# ---------------------------------------------------------------------------

def test_flight_event_shape(flight):
    [event] = flight_events(flight)
    assert event.title == '✈ AA123 (American) Arrival'
    assert event.starts_at == at(10)
    assert event.ends_at == at(14)
    assert event.location == 'JFK → LHR'
    assert event.item_type == 'arrival'


def test_flight_location_falls_back_to_city():
    flight = Flight(id='f', direction='departure', depart_city='Berlin', arrival_city='Vienna', depart_at=at(9))
    [event] = flight_events(flight)
    assert event.location == 'Berlin → Vienna'
    assert event.item_type == 'departure'
    assert event.title == '✈ Flight Departure'


def test_flight_without_depart_time_has_no_event():
    assert flight_events(Flight(id='f', arrival_at=at(9))) == []


def test_flight_auto_schedule_off_has_no_event(flight):
    flight.auto_schedule = False
    assert flight_events(flight) == []


def test_flight_person_id_propagates(flight):
    flight.person_id = 'p9'
    assert flight_events(flight)[0].person_id == 'p9'


def test_flight_update_scenario_leaves_exactly_one_item(fake_store, flight):
    sync_flight(flight, store=fake_store)
    flight.arrival_at = datetime(2024, 5, 1, 15, 0, tzinfo=UTC)
    sync_flight(flight, store=fake_store)

    tagged = items(fake_store, source=SOURCE_FLIGHTS, source_ref='f1')
    assert len(tagged) == 1
    assert tagged[0]['ends_at'] == datetime(2024, 5, 1, 15, 0, tzinfo=UTC)


def test_deleted_flight_cascade(fake_store, flight, manual_item):
    sync_flight(flight, store=fake_store)
    result = remove_derived_events(tag_for(SOURCE_FLIGHTS, flight.id), store=fake_store)

    assert result.success
    assert result.deleted == 1
    assert items(fake_store) == [manual_item]


# ---------------------------------------------------------------------------
# Lodging
# ---------------------------------------------------------------------------

def test_lodging_emits_check_in_and_check_out_markers():
    lodging = Lodging(id='l1', show_id='show1', hotel_name='Hotel Adler',
                      check_in_at=at(15), check_out_at=at(11, day=2))
    check_in, check_out = lodging_events(lodging, marker_minutes=15)

    assert 'check-in' in check_in.title
    assert check_in.ends_at - check_in.starts_at == timedelta(minutes=15)
    assert 'check-out' in check_out.title
    assert check_out.starts_at == at(11, day=2)
    assert {check_in.item_type, check_out.item_type} == {'hotel'}


def test_individual_lodging_emits_nothing():
    lodging = Lodging(id='l1', person_id='p1', check_in_at=at(15), check_out_at=at(11, day=2))
    assert lodging_events(lodging) == []


def test_lodging_missing_check_out_creates_only_check_in(fake_store):
    lodging = Lodging(id='l1', show_id='show1', hotel_name='Hotel Adler', check_in_at=at(15))
    result = sync_lodging(lodging, store=fake_store)

    assert result.created == 1
    assert result.skipped == 1
    assert items(fake_store, source=SOURCE_LODGING)[0]['title'] == 'Hotel check-in: Hotel Adler'


# ---------------------------------------------------------------------------
# Catering
# ---------------------------------------------------------------------------

def test_catering_is_a_thirty_minute_marker():
    [event] = catering_events(Catering(id='c1', provider_name='Küche Nord', service_at=at(18)), marker_minutes=30)
    assert event.starts_at == at(18)
    assert event.ends_at == at(18, 30)
    assert event.item_type == 'catering'


def test_catering_without_service_time_creates_nothing(fake_store):
    result = sync_catering(Catering(id='c1', show_id='show1', provider_name='Küche Nord'), store=fake_store)
    assert result.success
    assert result.created == 0
    assert result.skipped == 1


# ---------------------------------------------------------------------------
# Advancing fields
# ---------------------------------------------------------------------------

def _adv(name, value, field_type='text', section='Production', party='from_you'):
    return AdvancingField(section=section, field_name=name, field_type=field_type, value=value, party_type=party)


def test_advancing_text_field_time_anchored_on_show_date():
    [event] = advancing_events([_adv('Load in', 'Load in 2:15 PM')], date(2024, 5, 1), BERLIN)
    assert event.title == 'Load in'
    assert event.starts_at == datetime(2024, 5, 1, 14, 15, tzinfo=BERLIN)
    assert event.notes == 'Auto-generated from advancing: Production (from_you)'


def test_advancing_time_field_dict_value():
    [event] = advancing_events([_adv('Doors', {'time': '19:30'}, field_type='time')], '2024-05-01', BERLIN)
    assert event.starts_at == datetime(2024, 5, 1, 19, 30, tzinfo=BERLIN)


def test_advancing_time_field_full_timestamp_used_directly():
    [event] = advancing_events([_adv('Curfew', '2024-05-02T01:00:00+00:00', field_type='time')],
                               date(2024, 5, 1), BERLIN)
    assert event.starts_at == datetime(2024, 5, 2, 1, 0, tzinfo=UTC)


def test_advancing_ignores_other_types_and_empty_values():
    fields = [
        _adv('Hospitality', 'Rider at 18:00', field_type='textarea'),
        _adv('Doors', None),
        _adv('Parking', 'two spaces'),
        _adv('Stage', {'text': 'Changeover 21:15'}),
    ]
    events = advancing_events(fields, date(2024, 5, 1), BERLIN)
    assert [e.title for e in events] == ['Stage']


def test_sync_advancing_session_replaces_only_its_slice(fake_store, manual_item):
    fake_store.seed('shows', id='show1', title='Berlin', date=date(2024, 5, 1))
    fake_store.seed('advancing_sessions', id='s1', show_id='show1')
    fake_store.seed('advancing_fields', session_id='s1', section='Production', field_name='Doors',
                    field_type='text', value='Doors 19:00', party_type='from_us', sort_order=0)
    flight_item = fake_store.seed(SCHEDULE_TABLE, show_id='show1', title='flight', starts_at=at(9),
                                  auto_generated=True, source=SOURCE_FLIGHTS, source_ref='f1')

    first = sync_advancing_session('s1', store=fake_store, tz=BERLIN)
    second = sync_advancing_session('s1', store=fake_store, tz=BERLIN)

    assert first.created == second.created == 1
    tagged = items(fake_store, source=SOURCE_FIELDS, source_ref='s1')
    assert len(tagged) == 1
    assert tagged[0]['starts_at'] == datetime(2024, 5, 1, 19, 0, tzinfo=BERLIN)
    assert fake_store.get_by_id(SCHEDULE_TABLE, flight_item['id']) is not None
    assert fake_store.get_by_id(SCHEDULE_TABLE, manual_item['id']) is not None


def test_sync_advancing_unknown_session_not_found(fake_store):
    result = sync_advancing_session('missing', store=fake_store)
    assert not result.success
    assert 'not found' in result.error


# ---------------------------------------------------------------------------
# Travel grid
# ---------------------------------------------------------------------------

def test_travel_grid_events_for_assigned_people():
    people = [{'person_id': 'p1', 'name': 'Ada'}, {'person_id': 'p2', 'name': 'Bo'}]
    arrivals = {'p1': {'arrivalDate': '2024-05-01', 'arrivalTime': '14:30', 'flightNumber': 'LH2',
                       'fromCity': 'Munich', 'toCity': 'Berlin'}}
    hotels = {'p2': {'checkIn': '2024-05-01', 'checkOut': '2024-05-02', 'name': 'Hotel Adler'}}

    events = travel_grid_events(people, arrivals, {}, hotels, BERLIN)

    arrival, hotel = events
    assert arrival.title == '✈ Ada - Arrival'
    assert arrival.starts_at == datetime(2024, 5, 1, 14, 30, tzinfo=BERLIN)
    assert arrival.location == 'Berlin Airport'
    assert arrival.notes == 'Flight LH2 from Munich'
    assert arrival.person_id == 'p1'
    assert hotel.title == '🏨 Bo - Hotel'
    assert hotel.starts_at == datetime(2024, 5, 1, 15, 0, tzinfo=BERLIN)
    assert hotel.ends_at == datetime(2024, 5, 2, 11, 0, tzinfo=BERLIN)


def test_travel_grid_incomplete_rows_emit_nothing():
    people = [{'person_id': 'p1', 'name': 'Ada'}]
    departures = {'p1': {'departureDate': '2024-05-02'}}
    assert travel_grid_events(people, {}, departures, {}, BERLIN) == []


def test_sync_travel_grid_reads_grids_and_tags_session(fake_store, manual_item):
    fake_store.seed('shows', id='show1', date=date(2024, 5, 1))
    fake_store.seed('advancing_sessions', id='s1', show_id='show1')
    fake_store.people['show1'] = [{'person_id': 'p1', 'name': 'Ada', 'duty': 'artist'}]
    for column, value in (('departureDate', '2024-05-02'), ('departureTime', '09:10'), ('flightNumber', 'OS1')):
        fake_store.seed('advancing_fields', session_id='s1', section='Departure Flight',
                        field_name=f'departure_flight_p1_{column}', field_type='text', value=value,
                        party_type='from_us', sort_order=0)

    result = sync_travel_grid('s1', store=fake_store, tz=BERLIN)

    assert result.success
    [row] = items(fake_store, source=SOURCE_GRID, source_ref='s1')
    assert row['title'] == '✈ Ada - Departure'
    assert row['starts_at'] == datetime(2024, 5, 2, 9, 10, tzinfo=BERLIN)
    assert row['person_id'] == 'p1'
    assert fake_store.get_by_id(SCHEDULE_TABLE, manual_item['id']) is not None


def test_sync_travel_grid_unknown_session(fake_store):
    assert not sync_travel_grid('nope', people=[], store=fake_store).success


# ---------------------------------------------------------------------------
# resync_show
# ---------------------------------------------------------------------------

def test_resync_show_rebuilds_every_record(fake_store):
    fake_store.seed('shows', id='show1', date=date(2024, 5, 1))
    fake_store.seed('advancing_flights', id='f1', show_id='show1', direction='arrival', depart_at=at(8),
                    arrival_at=at(10), flight_number='AB1', auto_schedule=True)
    fake_store.seed('advancing_lodging', id='l1', show_id='show1', hotel_name='Adler',
                    check_in_at=at(15), check_out_at=at(11, day=2))
    fake_store.seed('advancing_catering', id='c1', show_id='show1', service_at=at(18))

    result = resync_show('show1', store=fake_store)

    assert result.success
    assert result.created == 4
    assert len(items(fake_store)) == 4


def test_resync_unknown_show(fake_store):
    result = resync_show('missing', store=fake_store)
    assert not result.success
    assert 'not found' in result.error


# ---------------------------------------------------------------------------
# apply_schedule_move (reverse sync)
# ---------------------------------------------------------------------------

def test_move_lodging_check_in_updates_record_and_items(fake_store):
    lodging = fake_store.seed('advancing_lodging', id='l1', show_id='show1', hotel_name='Adler',
                              check_in_at=at(15), check_out_at=at(11, day=2))
    sync_lodging(Lodging(**lodging), store=fake_store)
    check_in = next(r for r in items(fake_store) if 'check-in' in r['title'])

    result = apply_schedule_move(check_in['id'], at(17), store=fake_store)

    assert result.success
    assert fake_store.get_by_id('advancing_lodging', 'l1')['check_in_at'] == at(17)
    starts = sorted(r['starts_at'] for r in items(fake_store, source=SOURCE_LODGING))
    assert starts == [at(17), at(11, day=2)]


def test_move_catering_updates_service_time(fake_store):
    fake_store.seed('advancing_catering', id='c1', show_id='show1', service_at=at(18))
    sync_catering(Catering(id='c1', show_id='show1', service_at=at(18)), store=fake_store)
    [item] = items(fake_store)

    apply_schedule_move(item['id'], '2024-05-01T19:00:00Z', store=fake_store)

    assert fake_store.get_by_id('advancing_catering', 'c1')['service_at'] == at(19)
    assert items(fake_store)[0]['starts_at'] == at(19)


def test_move_flight_updates_depart_and_arrival(fake_store, flight):
    fake_store.seed('advancing_flights', id='f1', show_id='show1', direction='arrival',
                    depart_at=at(10), arrival_at=at(14), flight_number='AA123')
    sync_flight(flight, store=fake_store)
    [item] = items(fake_store)

    apply_schedule_move(item['id'], at(11), at(15), store=fake_store)

    record = fake_store.get_by_id('advancing_flights', 'f1')
    assert (record['depart_at'], record['arrival_at']) == (at(11), at(15))


def test_move_manual_item_is_noop(fake_store, manual_item):
    result = apply_schedule_move(manual_item['id'], at(20), store=fake_store)
    assert result.success
    assert result.created == result.deleted == 0


def test_move_missing_item_not_found(fake_store):
    result = apply_schedule_move('nope', at(20), store=fake_store)
    assert not result.success
    assert 'not found' in result.error


def test_move_with_missing_source_record(fake_store):
    item = fake_store.seed(SCHEDULE_TABLE, show_id='show1', title='Catering', starts_at=at(18),
                           auto_generated=True, source=SOURCE_CATERING, source_ref='gone')
    result = apply_schedule_move(item['id'], at(19), store=fake_store)
    assert not result.success


def test_move_with_invalid_start(fake_store):
    assert not apply_schedule_move('x', 'tomorrow', store=fake_store).success


# ---------------------------------------------------------------------------
# Bus wiring
# ---------------------------------------------------------------------------

def test_register_handlers_is_idempotent():
    event_bus = EventBus()
    register_handlers(event_bus)
    register_handlers(event_bus)
    assert len(event_bus._handlers[EVENT_FLIGHT_SAVED]) == 1


def test_flight_saved_event_syncs_and_reports(fake_store, flight):
    event_bus = EventBus()
    register_handlers(event_bus)
    reports = []
    with patch.object(schedule_sync, 'default_store', fake_store), \
         patch.object(schedule_sync, 'bus', event_bus):
        event_bus.on(EVENT_SCHEDULE_SYNCED, reports.append)
        event_bus.emit(EVENT_FLIGHT_SAVED, {'flight_id': 'f1', 'flight': flight})

    assert len(items(fake_store, source=SOURCE_FLIGHTS, source_ref='f1')) == 1
    assert reports[0]['source_ref'] == 'f1'
    assert reports[0]['result'].created == 1


def test_failed_sync_reports_failure_event(fake_store, flight):
    event_bus = EventBus()
    register_handlers(event_bus)
    failures = []
    fake_store.fail_reads = True
    with patch.object(schedule_sync, 'default_store', fake_store), \
         patch.object(schedule_sync, 'bus', event_bus):
        event_bus.on(EVENT_SCHEDULE_SYNC_FAILED, failures.append)
        event_bus.emit(EVENT_FLIGHT_SAVED, {'flight_id': 'f1', 'flight': flight})

    assert len(failures) == 1
    assert not failures[0]['result'].success
