import asyncio
import logging

import pytest

from flipperfan.transmitter import TransmissionEngine, build_commands, format_command


def test_format_command(signal_factory):
    signal = signal_factory("Fan_low", 3, frequency=38000, duty_cycle=33.0)

    assert format_command(signal, signal.samples) == "ir tx RAW F:38000 DC:33 500 501 502\r\n"


def test_format_command_keeps_fractional_duty_cycle(signal_factory):
    signal = signal_factory("Fan_low", 1, duty_cycle=33.5)

    assert "DC:33.5 " in format_command(signal, signal.samples)


def test_build_commands_chunks_samples(signal_factory):
    signal = signal_factory("Fan_high", 130)

    commands = build_commands(signal, chunk_size=64)

    assert len(commands) == 3
    sizes = [len(command.split()) - 4 for command in commands]
    assert sizes == [64, 64, 2]
    assert all(command.endswith("\r\n") for command in commands)
    # Order is preserved across chunks.
    sent = [int(v) for command in commands for v in command.split()[4:]]
    assert sent == list(signal.samples)


def test_build_commands_rejects_bad_chunk_size(signal_factory):
    with pytest.raises(ValueError):
        build_commands(signal_factory("Fan_low"), chunk_size=0)


@pytest.mark.asyncio
async def test_send_repeats_every_try(fake_link, signal_factory):
    signal = signal_factory("Fan_high", 130)
    engine = TransmissionEngine(fake_link, tries=3, chunk_delay=0)

    await engine.send(signal)

    commands = build_commands(signal)
    assert fake_link.written == commands * 3
    assert fake_link.drain_calls == 0


@pytest.mark.asyncio
async def test_send_stop_on_success(fake_link, signal_factory):
    signal = signal_factory("Fan_high", 130)
    engine = TransmissionEngine(fake_link, tries=3, chunk_delay=0, stop_on_success=True)

    await engine.send(signal)

    assert fake_link.written == build_commands(signal)


@pytest.mark.asyncio
async def test_send_drains_on_backpressure(fake_link, signal_factory):
    fake_link.backpressure = True
    engine = TransmissionEngine(fake_link, tries=1, chunk_delay=0)

    await engine.send(signal_factory("Fan_high", 130))

    assert fake_link.drain_calls == 3


@pytest.mark.asyncio
async def test_send_without_connection_is_a_noop(fake_link, signal_factory, caplog):
    fake_link.is_open = False
    engine = TransmissionEngine(fake_link, chunk_delay=0)

    await engine.send(signal_factory("Fan_low"))

    assert fake_link.attempted == []
    assert "Serial port is not open. Cannot send IR signal Fan_low" in caplog.text


@pytest.mark.asyncio
async def test_failed_chunk_restarts_from_first_chunk(fake_link, signal_factory, caplog):
    signal = signal_factory("Fan_high", 130)
    c1, c2, c3 = build_commands(signal)
    fake_link.fail_writes = {2}
    engine = TransmissionEngine(fake_link, tries=2, chunk_delay=0)

    await engine.send(signal)

    assert fake_link.attempted == [c1, c2, c1, c2, c3]
    assert fake_link.written == [c1, c1, c2, c3]
    assert "Failed to send chunk 2/3 of IR signal Fan_high" in caplog.text


@pytest.mark.asyncio
async def test_drain_failure_aborts_attempt(fake_link, signal_factory, caplog):
    fake_link.backpressure = True
    fake_link.fail_drain = True
    engine = TransmissionEngine(fake_link, tries=3, chunk_delay=0)

    await engine.send(signal_factory("Fan_high", 130))

    # Every try stops after its first chunk.
    assert len(fake_link.attempted) == 3
    assert "Failed to send chunk 1/3 of IR signal Fan_high" in caplog.text
    assert "Giving up on IR signal Fan_high after 3 failed tries" in caplog.text


@pytest.mark.asyncio
async def test_send_never_raises(fake_link, signal_factory):
    fake_link.fail_writes = set(range(1, 100))
    engine = TransmissionEngine(fake_link, tries=3, chunk_delay=0)

    await engine.send(signal_factory("Fan_low"))

    assert fake_link.written == []
    assert not engine.busy


@pytest.mark.asyncio
async def test_concurrent_sends_do_not_interleave(fake_link, signal_factory):
    low = signal_factory("Fan_low", 130, frequency=38000)
    high = signal_factory("Fan_high", 130, frequency=40000)
    engine = TransmissionEngine(fake_link, tries=2, chunk_delay=0.001)

    await asyncio.gather(engine.send(low), engine.send(high))

    expected = build_commands(low) * 2 + build_commands(high) * 2
    assert fake_link.written == expected


@pytest.mark.asyncio
async def test_second_send_waits_for_lock(fake_link, signal_factory):
    low = signal_factory("Fan_low", 130)
    engine = TransmissionEngine(fake_link, tries=1, chunk_delay=0.05)
    first = asyncio.create_task(engine.send(low))
    await asyncio.sleep(0)

    assert engine.busy
    second = asyncio.create_task(engine.send(signal_factory("Fan_off", 10)))
    await asyncio.sleep(0.01)
    assert fake_link.written == build_commands(low)[:1]

    await asyncio.gather(first, second)
    assert len(fake_link.written) == 4
    assert not engine.busy


def test_tries_must_be_positive(fake_link):
    with pytest.raises(ValueError):
        TransmissionEngine(fake_link, tries=0)


@pytest.mark.asyncio
async def test_send_logs_tries(fake_link, signal_factory, caplog):
    caplog.set_level(logging.DEBUG)
    engine = TransmissionEngine(fake_link, tries=2, chunk_delay=0)

    await engine.send(signal_factory("Fan_med"))

    assert "Will send IR signal: Fan_med" in caplog.text
    assert "Sending IR signal Fan_med, try (2/2)" in caplog.text
