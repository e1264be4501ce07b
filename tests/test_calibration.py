import unittest
from datetime import datetime, timezone

from agromet.calibration import (
    add_sensor,
    calibrate,
    calibrate_series,
    config_to_rows,
    new_sensor_key,
    remove_sensor,
    rows_to_config,
    sensor_offset,
    update_sensor,
)
from agromet.models import Measurement, SensorSetting

NOW = datetime(2026, 5, 1, 6, 0, tzinfo=timezone.utc)


def reading(temperature=12.0, humidity=60.0, **kwargs):
    return Measurement(
        station_id="st-1",
        created_at=kwargs.pop("created_at", NOW),
        temperature=temperature,
        humidity=humidity,
        **kwargs,
    )


class CalibrateTest(unittest.TestCase):
    def test_empty_config_is_identity(self):
        m = reading(temperature=-3.25, humidity=41.5)
        for config in ({}, None):
            cal = calibrate(m, config)
            self.assertEqual(cal.temperature, m.temperature)
            self.assertEqual(cal.humidity, m.humidity)

    def test_raw_values_are_kept(self):
        m = reading(temperature=7.0, humidity=50.0)
        cal = calibrate(m, {"temp_air": {"name": "Air", "offset": 1.5}, "humidity": {"name": "RH", "offset": -5}})
        self.assertEqual(cal.raw_temperature, 7.0)
        self.assertEqual(cal.raw_humidity, 50.0)
        self.assertAlmostEqual(cal.temperature, 8.5)
        self.assertAlmostEqual(cal.humidity, 45.0)

    def test_temperature_offset_is_not_clamped(self):
        cal = calibrate(reading(temperature=-30.0), {"temp_air": {"name": "Air", "offset": -25}})
        self.assertAlmostEqual(cal.temperature, -55.0)

    def test_humidity_is_clamped(self):
        high = calibrate(reading(humidity=98.0), {"humidity": {"name": "RH", "offset": 10}})
        low = calibrate(reading(humidity=3.0), {"humidity": {"name": "RH", "offset": -10}})
        out_of_range_raw = calibrate(reading(humidity=140.0), {})
        self.assertEqual(high.humidity, 100.0)
        self.assertEqual(low.humidity, 0.0)
        self.assertEqual(out_of_range_raw.humidity, 100.0)

    def test_other_fields_pass_through(self):
        created = datetime(2026, 5, 1, 5, 0, tzinfo=timezone.utc)
        cal = calibrate(reading(created_at=created, battery_voltage=3.9, signal_strength=17), {})
        self.assertEqual(cal.created_at, created)
        self.assertEqual(cal.battery_voltage, 3.9)
        self.assertEqual(cal.signal_strength, 17)
        self.assertEqual(cal.station_id, "st-1")

    def test_calibrate_series_keeps_order(self):
        series = [reading(temperature=t) for t in (1.0, 2.0, 3.0)]
        cal = calibrate_series(series, {"temp_air": {"name": "Air", "offset": 1}})
        self.assertEqual([c.temperature for c in cal], [2.0, 3.0, 4.0])


def test_sensor_offset_tolerates_bad_entries():
    assert sensor_offset(None, "temp_air") == 0.0
    assert sensor_offset({}, "temp_air") == 0.0
    assert sensor_offset({"temp_air": "oops"}, "temp_air") == 0.0
    assert sensor_offset({"temp_air": {"name": "Air"}}, "temp_air") == 0.0
    assert sensor_offset({"temp_air": {"offset": "abc"}}, "temp_air") == 0.0
    assert sensor_offset({"temp_air": {"offset": "0.7"}}, "temp_air") == 0.7


def test_humidity_always_in_range_for_any_offset():
    for raw in (-20.0, 0.0, 50.0, 100.0, 180.0):
        for offset in (-500, -10, 0, 10, 500):
            cal = calibrate(reading(humidity=raw), {"humidity": {"name": "RH", "offset": offset}})
            assert 0 <= cal.humidity <= 100


class SensorEditorTest(unittest.TestCase):
    def test_empty_config_gives_default_rows(self):
        rows = config_to_rows({})
        self.assertEqual([r.key for r in rows], ["temp_air", "humidity"])
        self.assertTrue(all(r.offset == 0.0 for r in rows))

    def test_config_rows_round_trip(self):
        config = {
            "temp_air": {"name": "Air temperature", "offset": -0.4},
            "soil": {"name": "Soil probe", "offset": 1.25},
        }
        self.assertEqual(rows_to_config(config_to_rows(config)), config)

    def test_rows_to_config_drops_blank_keys(self):
        rows = [SensorSetting("", "Nameless", 1.0), SensorSetting("humidity", "RH", 2.0)]
        self.assertEqual(rows_to_config(rows), {"humidity": {"name": "RH", "offset": 2.0}})

    def test_add_sensor_uses_millisecond_key(self):
        at = datetime(2026, 5, 1, 0, 0, tzinfo=timezone.utc)
        self.assertEqual(new_sensor_key(at), f"sensor_{int(at.timestamp() * 1000)}")
        rows = add_sensor([], now=at)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].name, "New sensor")
        self.assertEqual(rows[0].offset, 0.0)

    def test_add_sensor_twice_in_same_millisecond_keeps_keys_unique(self):
        at = datetime(2026, 5, 1, 0, 0, tzinfo=timezone.utc)
        rows = add_sensor(add_sensor([], now=at), now=at)
        self.assertEqual(len({r.key for r in rows}), 2)

    def test_update_and_remove(self):
        rows = config_to_rows({})
        rows = update_sensor(rows, "temp_air", "offset", "not a number")
        self.assertEqual(rows[0].offset, 0.0)
        rows = update_sensor(rows, "temp_air", "offset", 0.3)
        rows = update_sensor(rows, "humidity", "name", "RH probe")
        self.assertEqual(rows[0].offset, 0.3)
        self.assertEqual(rows[1].name, "RH probe")
        rows = remove_sensor(rows, "temp_air")
        self.assertEqual([r.key for r in rows], ["humidity"])

    def test_update_unknown_field_raises(self):
        with self.assertRaises(ValueError):
            update_sensor(config_to_rows({}), "temp_air", "key", "x")


if __name__ == "__main__":
    unittest.main()
