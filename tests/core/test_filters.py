from capture_agent_mcp.core.filters import FilterCompiler


def test_compile_installs_and_releases(fake_handle):
    fc = FilterCompiler(fake_handle, "fake0")
    assert fc.compile("tcp port 80") is True
    assert fake_handle.installed == "tcp port 80"
    assert len(fake_handle.released) == 1
    assert fc.last_error is None


def test_compile_error_leaves_installed_filter(fake_handle):
    fc = FilterCompiler(fake_handle, "fake0")
    fc.compile("tcp")
    assert fc.compile("bad") is False
    assert fake_handle.installed == "tcp"
    assert "bad" in fc.last_error


def test_install_error_still_releases(make_handle):
    handle = make_handle(fail_install=True)
    fc = FilterCompiler(handle, "fake0")
    assert fc.compile("udp") is False
    assert handle.installed == ""
    assert len(handle.released) == 1
    assert fc.last_error == "install refused"


def test_netmask_lookup_falls_back_to_zero(make_handle):
    fc = FilterCompiler(make_handle(netmask=None), "fake0")
    assert fc.resolve_netmask() == (0, 0)


def test_netmask_lookup(fake_handle):
    fc = FilterCompiler(fake_handle, "fake0")
    assert fc.resolve_netmask() == (0x0A000000, 0xFFFFFF00)
    assert fc.netmask == 0xFFFFFF00
