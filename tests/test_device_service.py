"""
Unit tests for the device service: reads, writes and model scans
against the in-memory Modbus network.
"""

import asyncio

import pytest

from sunspec_controller.common.config import DeviceIdentity, Dialect, EngineSettings, PoolSettings, ReadSettings
from sunspec_controller.common.exceptions import (
    CommandNotTakenError,
    ConfigError,
    ModelNotFoundError,
    OperationTimeoutError,
    PointNotFoundError,
    WriteTypeUnsupportedError,
)
from sunspec_controller.common.models import ModelDefinition, PointDefinition
from sunspec_controller.services.device import DeviceService, MemoryAddressCache, PointRequest
from sunspec_controller.services.device.model_chain import ModelBlock

from tests.fakes import build_sunspec_map, common_model_values, inverter_values

INVERTER = DeviceIdentity("10.0.0.1", 502, 1)


def header_reads(device) -> list[int]:
    """Addresses of two-register reads, i.e. chain walk steps"""
    return [address for _, address, count in device.reads if count == 2]


class TestReadPoint:

    @pytest.mark.asyncio
    async def test_reads_scaled_value(self, device_service):
        value = await device_service.read_point("10.0.0.1", 502, 1, 103, "A")

        assert value == 12.34

    @pytest.mark.asyncio
    async def test_walk_result_is_cached(self, device_service, cache, network):
        device = network.devices[("10.0.0.1", 502)]

        await device_service.read_point("10.0.0.1", 502, 1, 103, "W")
        walked = header_reads(device)
        device.reads.clear()
        await device_service.read_point("10.0.0.1", 502, 1, 103, "Hz")

        assert walked == [40000, 40002, 40070]
        assert cache.get_address(INVERTER, 103) == 40070
        assert header_reads(device) == []

    @pytest.mark.asyncio
    async def test_model_id_as_string(self, device_service):
        assert await device_service.read_point("10.0.0.1", 502, 1, "103", "Hz") == 50.01

    @pytest.mark.asyncio
    async def test_unknown_point(self, device_service, network):
        with pytest.raises(PointNotFoundError):
            await device_service.read_point("10.0.0.1", 502, 1, 103, "Bogus")

        assert network.sessions == []

    @pytest.mark.asyncio
    async def test_unknown_model_definition(self, device_service):
        with pytest.raises(ConfigError, match="No definition loaded for model 999"):
            await device_service.read_point("10.0.0.1", 502, 1, 999, "W")

    @pytest.mark.asyncio
    async def test_model_missing_on_device(self, device_service):
        with pytest.raises(ModelNotFoundError):
            await device_service.read_point("10.0.0.1", 502, 1, 101, "W")

    @pytest.mark.asyncio
    async def test_unresponsive_unit(self, device_service):
        with pytest.raises(OperationTimeoutError):
            await device_service.read_point("10.0.0.1", 502, 9, 103, "W")

    @pytest.mark.asyncio
    async def test_stale_cache_entry_revalidated(self, model_index, network):
        settings = EngineSettings(
            pool=PoolSettings(cooldown_s=0.0),
            read=ReadSettings(validate_cache_hits=True),
        )
        cache = MemoryAddressCache()
        cache.set_block(INVERTER, ModelBlock(103, 40100, 50))

        async with DeviceService(settings, model_index, cache, network.session_factory) as service:
            value = await service.read_point("10.0.0.1", 502, 1, 103, "A")

        assert value == 12.34
        assert cache.get_address(INVERTER, 103) == 40070

    @pytest.mark.asyncio
    async def test_point_unit_id_override(self, model_index, network, settings):
        network.devices[("10.0.0.1", 502)].units[2] = build_sunspec_map([
            (1, 66, common_model_values()),
            (103, 50, {**inverter_values(), 2: 500}),
        ])
        model_index.add(ModelDefinition(
            model_id="meter_unit2",
            points=[PointDefinition(name="A", unit_id=2)],
        ))
        cache = MemoryAddressCache()
        cache.set_device_map(INVERTER, {"meter_unit2": {"start": 40072, "length": 1}})

        async with DeviceService(settings, model_index, cache, network.session_factory) as service:
            value = await service.read_point("10.0.0.1", 502, 1, "meter_unit2", "A")

        assert value == 500


    @pytest.mark.asyncio
    async def test_concurrent_reads_do_not_interleave(self, device_service, network):
        device = network.devices[("10.0.0.1", 502)]
        device.delay = 0.01

        values = await asyncio.gather(
            device_service.read_point("10.0.0.1", 502, 1, 103, "A"),
            device_service.read_point("10.0.0.1", 502, 1, 103, "Hz"),
        )

        addresses = [address for _, address, _ in device.reads]
        assert values == [12.34, 50.01]
        # One chain walk, then each call's value and scale factor back to back
        assert addresses[:3] == [40000, 40002, 40070]
        assert addresses[3:] in (
            [40072, 40076, 40086, 40087],
            [40086, 40087, 40072, 40076],
        )


class TestReadPoints:

    @pytest.mark.asyncio
    async def test_batch_keeps_order(self, device_service):
        readings = await device_service.read_points(
            [
                PointRequest("10.0.0.1", 1, 103, "W"),
                PointRequest("10.0.0.1", 1, 103, "A"),
                PointRequest("10.0.0.1", 1, 1, "Mn"),
            ],
            port=502,
        )

        assert [r.value for r in readings] == [3000, 12.34, "Fronius"]
        assert all(r.success for r in readings)

    @pytest.mark.asyncio
    async def test_point_errors_are_per_reading(self, device_service):
        readings = await device_service.read_points(
            [
                PointRequest("10.0.0.1", 1, 103, "Bogus"),
                PointRequest("10.0.0.1", 1, 103, "W"),
                PointRequest("10.0.0.1", 1, 999, "W"),
                PointRequest("10.0.0.1", 1, 103, "AphB"),
            ],
            port=502,
        )

        assert readings[0].error is not None
        assert readings[1].value == 3000
        assert "No definition loaded for model 999" in readings[2].error
        assert readings[3].success
        assert readings[3].value is None

    @pytest.mark.asyncio
    async def test_unreachable_device_fails_its_group_only(self, device_service):
        readings = await device_service.read_points(
            [
                PointRequest("10.0.0.50", 1, 103, "W"),
                PointRequest("10.0.0.1", 1, 103, "W"),
            ],
            port=502,
        )

        assert readings[0].value is None
        assert "Connection refused" in readings[0].error
        assert readings[1].value == 3000

    @pytest.mark.asyncio
    async def test_reading_to_dict(self, device_service):
        readings = await device_service.read_points([PointRequest("10.0.0.1", 1, 103, "W")], 502)

        assert readings[0].to_dict() == {
            "host": "10.0.0.1",
            "port": 502,
            "unit_id": 1,
            "model": 103,
            "point": "W",
            "value": 3000,
            "error": None,
        }


class TestWritePoint:

    @pytest.fixture
    def writable_index(self, model_index):
        model_index.add(ModelDefinition(
            model_id=123,
            points=[
                PointDefinition(name="ID"),
                PointDefinition(name="L"),
                PointDefinition(name="Conn_WinTms"),
                PointDefinition(name="Conn_RvrtTms"),
                PointDefinition(name="Conn", type="enum16"),
                PointDefinition(name="WMaxLimPct", sf="WMaxLimPct_SF"),
                PointDefinition(name="WMaxLimPct_SF", type="sunssf"),
                PointDefinition(name="Note", type="string", size=4),
            ],
        ))
        return model_index

    @pytest.fixture
    def controls(self, network):
        device = network.devices[("10.0.0.1", 502)]
        device.units[1] = build_sunspec_map([
            (1, 66, common_model_values()),
            (123, 10, {5: 100, 6: 0}),
        ])
        return device

    @pytest.mark.asyncio
    async def test_write(self, device_service, writable_index, controls):
        result = await device_service.write_point("10.0.0.1", 502, 1, 123, "WMaxLimPct", 50)

        assert result.success
        assert result.address == 40075
        assert controls.writes == [(1, 40075, [50])]
        assert await device_service.read_point("10.0.0.1", 502, 1, 123, "WMaxLimPct") == 50

    @pytest.mark.asyncio
    async def test_write_verified(self, device_service, writable_index, controls):
        result = await device_service.write_point(
            "10.0.0.1", 502, 1, 123, "Conn", 1, verify=True
        )

        assert result.verified
        assert result.read_back_registers == [1]

    @pytest.mark.asyncio
    async def test_command_not_taken(self, device_service, writable_index, controls):
        controls.ignore_writes = True

        with pytest.raises(CommandNotTakenError) as exc_info:
            await device_service.write_point("10.0.0.1", 502, 1, 123, "Conn", 1, verify=True)

        assert exc_info.value.register == 40074

    @pytest.mark.asyncio
    async def test_unsupported_type_is_not_sent(self, device_service, writable_index, controls):
        with pytest.raises(WriteTypeUnsupportedError):
            await device_service.write_point("10.0.0.1", 502, 1, 123, "Note", 1)

        assert controls.writes == []

    @pytest.mark.asyncio
    async def test_write_with_bundled_controls_model(self, device_service, network):
        device = network.devices[("10.0.0.1", 502)]
        device.units[1] = build_sunspec_map([
            (1, 66, common_model_values()),
            (123, 24, {4: 1, 5: 100, 23: 0}),
        ])

        result = await device_service.write_point("10.0.0.1", 502, 1, 123, "WMaxLimPct", 50)

        assert result.address == 40075
        assert device.writes == [(1, 40075, [50])]
        assert await device_service.read_point("10.0.0.1", 502, 1, 123, "WMaxLimPct") == 50
        assert await device_service.read_point("10.0.0.1", 502, 1, 123, "Conn") == 1


class TestModelScan:

    @pytest.mark.asyncio
    async def test_full_scan(self, device_service, cache):
        models = await device_service.scan_device_models("10.0.0.1", 502, 1)

        assert models["info"] == {"Mn": "Fronius", "Md": "Symo 10.0-3-M", "SN": "12345678"}
        assert models["1"]["start"] == 40002
        assert models["103"]["start"] == 40070
        assert models["103"]["length"] == 50
        assert "A" in models["103"]["implementedFields"]
        assert "AphB" not in models["103"]["implementedFields"]
        assert models["scan"] == "full"
        assert cache.get_device_map(INVERTER) == models

    @pytest.mark.asyncio
    async def test_fast_scan_stops_after_common_model(self, device_service):
        models = await device_service.scan_device_models("10.0.0.1", 502, 1, fast=True)

        assert set(models) == {"1", "info", "scan"}
        assert models["scan"] == "partial"

    @pytest.mark.asyncio
    async def test_unknown_models_recorded_without_fields(self, device_service, network):
        network.devices[("10.0.0.1", 502)].units[1] = build_sunspec_map([
            (1, 66, common_model_values()),
            (64110, 20, {}),
        ])

        models = await device_service.scan_device_models("10.0.0.1", 502, 1)

        assert models["64110"] == {"start": 40070, "length": 20}

    @pytest.mark.asyncio
    async def test_sma_device(self, device_service, network, cache):
        network.add("10.0.0.3", 502, {3: {30051: 0, 30052: 8128}})

        models = await device_service.scan_device_models("10.0.0.3", 502, 3)

        assert models == {
            "sma_edmm": {"start": 0, "length": 0},
            "info": {"Mn": "SMA", "Md": "Data Manager"},
            "scan": "vendor",
        }

    @pytest.mark.asyncio
    async def test_known_vendor_dialect(self, device_service, network):
        network.add("10.0.0.4", 503, {10: {}})

        models = await device_service.scan_device_models(
            "10.0.0.4", 503, 10, dialect=Dialect.CONEXT_XW_503
        )

        assert models["info"]["Mn"] == "Schneider"
        assert network.devices[("10.0.0.4", 503)].reads == []

    @pytest.mark.asyncio
    async def test_not_a_sunspec_device(self, device_service, network, cache):
        network.add("10.0.0.5", 502, {1: {0: 0}})

        models = await device_service.scan_device_models("10.0.0.5", 502, 1)

        assert models == {}
        assert cache.get_device_map(DeviceIdentity("10.0.0.5", 502, 1)) is None

    @pytest.mark.asyncio
    async def test_get_device_models_uses_full_cached_map(self, device_service, network):
        device = network.devices[("10.0.0.1", 502)]
        first = await device_service.get_device_models("10.0.0.1", 502, 1)
        device.reads.clear()

        second = await device_service.get_device_models("10.0.0.1", 502, 1)

        assert second == first
        assert device.reads == []

    @pytest.mark.asyncio
    async def test_get_device_models_rescans_identity_only_map(self, device_service):
        await device_service.scan_device_models("10.0.0.1", 502, 1, fast=True)

        models = await device_service.get_device_models("10.0.0.1", 502, 1)

        assert "103" in models

    @pytest.mark.asyncio
    async def test_common_model_only_device_not_rescanned(self, device_service, network):
        device = network.add("10.0.0.6", 502, {
            1: build_sunspec_map([(1, 66, common_model_values())]),
        })
        first = await device_service.get_device_models("10.0.0.6", 502, 1)
        device.reads.clear()

        second = await device_service.get_device_models("10.0.0.6", 502, 1)

        assert set(first) == {"1", "info", "scan"}
        assert first["scan"] == "full"
        assert second == first
        assert device.reads == []

    @pytest.mark.asyncio
    async def test_refresh_rescans_full_map(self, device_service, network):
        device = network.devices[("10.0.0.1", 502)]
        await device_service.get_device_models("10.0.0.1", 502, 1)
        device.reads.clear()

        await device_service.get_device_models("10.0.0.1", 502, 1, refresh=True)

        assert 40002 in header_reads(device)

    @pytest.mark.asyncio
    async def test_scanned_addresses_serve_reads(self, device_service, network):
        device = network.devices[("10.0.0.1", 502)]
        await device_service.scan_device_models("10.0.0.1", 502, 1)
        device.reads.clear()

        assert await device_service.read_point("10.0.0.1", 502, 1, 103, "W") == 3000
        assert header_reads(device) == []

    @pytest.mark.asyncio
    async def test_stats(self, device_service):
        await device_service.read_point("10.0.0.1", 502, 1, 103, "W")

        stats = device_service.get_stats()

        assert stats["models_loaded"] == 13
        assert stats["pool"]["total_connections"] == 1
