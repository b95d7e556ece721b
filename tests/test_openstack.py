"""
Test k3sboot.cloud.openstack with a mocked connection
"""
#  pylint: disable=redefined-outer-name
import base64
from unittest.mock import MagicMock, patch

import pytest
from munch import Munch
from openstack.exceptions import (ConfigException, ConflictException,
                                  ResourceNotFound, ResourceTimeout,
                                  SDKException)

from k3sboot.cloud import BuilderError
from k3sboot.cloud.openstack import (OpenStackProvider, get_connection,
                                     find_external_network, rule_from_os)
from k3sboot.cloud.resources import (declare_resources, Rule, NETWORK, SUBNET,
                                     GATEWAY, ROUTE_TABLE, SECURITY_GROUP,
                                     KEYPAIR, INSTANCE)
from k3sboot.util.config import merge
from k3sboot.util.util import WaitTimeout

from .testdata import make_config


class Network:
    def __init__(self, name, id):
        self.name = name
        self.id = id


def both_networks(*args, **kwargs):
    return [Network("ext01", "alskdqw1"), Network("ext02", "asodkaklsd22")]


def no_networks(*args, **kwargs):
    return []


DEFAULT_EGRESS = [
    {"direction": "egress", "ethertype": "IPv4", "protocol": None,
     "port_range_min": None, "port_range_max": None,
     "remote_ip_prefix": None},
    {"direction": "egress", "ethertype": "IPv6", "protocol": None,
     "port_range_min": None, "port_range_max": None,
     "remote_ip_prefix": None}]


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path, provider="openstack",
                       **{"instance-type": "ECS.C1.2-4"})


@pytest.fixture
def conn():
    conn = MagicMock()
    conn.network.networks = both_networks
    return conn


@pytest.fixture
def provider(config, conn):
    return OpenStackProvider(config, conn=conn)


@pytest.fixture
def resources(config):
    return {r.kind: r for r in declare_resources(config)}


@pytest.fixture
def state():
    return {NETWORK: Munch(id="net-1", name="test-net"),
            SUBNET: Munch(id="subnet-1", cidr="10.0.1.0/24"),
            GATEWAY: Munch(id="router-1", name="test-gw"),
            SECURITY_GROUP: Munch(id="sg-1", name="test-sec-group"),
            KEYPAIR: Munch(id="test-key", name="test-key")}


def test_find_external_network():
    conn = MagicMock()
    conn.network.networks = both_networks

    assert find_external_network(conn).name == "ext01"
    assert find_external_network(conn, "ext02").name == "ext02"

    with pytest.raises(BuilderError):
        find_external_network(conn, "public")

    conn.network.networks = no_networks
    with pytest.raises(BuilderError):
        find_external_network(conn)


def test_get_connection():
    with patch("k3sboot.cloud.openstack.openstack.connect") as connect:
        connect.side_effect = ConfigException("no cloud")
        with pytest.raises(BuilderError):
            get_connection()

        connect.side_effect = None
        connect.return_value = MagicMock(session=None)
        with pytest.raises(BuilderError):
            get_connection()


def test_rule_from_os():
    assert rule_from_os(DEFAULT_EGRESS[0]) == Rule("egress", "all")
    assert rule_from_os(DEFAULT_EGRESS[1]) is None
    assert rule_from_os({"direction": "ingress", "protocol": "tcp",
                         "port_range_min": 22, "port_range_max": 22,
                         "remote_ip_prefix": "0.0.0.0/0"}) == \
        Rule("ingress", "tcp", 22)


def test_security_group_drift(provider, conn, resources):
    record = Munch(id="sg-1", security_group_rules=DEFAULT_EGRESS)
    resource = resources[SECURITY_GROUP]

    missing = provider.drift(resource, record)
    assert sorted(r.port_min for r in missing) == [22, 80, 443, 6443]

    provider.update(resource, record, {})
    assert conn.network.create_security_group_rule.call_count == 4


def test_existing_rule_is_fine(provider, conn):
    conn.network.create_security_group_rule.side_effect = ConflictException()

    provider.add_sec_rule("sg-1", Rule("ingress", "tcp", 22))


def test_add_all_rule(provider, conn):
    provider.add_sec_rule("sg-1", Rule("egress", "all"))

    kwargs = conn.network.create_security_group_rule.call_args[1]
    assert "protocol" not in kwargs
    assert kwargs["direction"] == "egress"


def test_create_gateway_uses_external_network(config, conn, resources, state):
    config = merge(config, {"network": {"external-network": "ext02"}})
    provider = OpenStackProvider(config, conn=conn)

    provider.create(resources[GATEWAY], state)

    kwargs = conn.network.create_router.call_args[1]
    assert kwargs["external_gateway_info"] == {"network_id": "asodkaklsd22"}


def test_gateway_and_interface_drift(provider, conn, resources, state):
    assert provider.drift(resources[GATEWAY],
                          Munch(external_gateway_info=None))
    assert not provider.drift(resources[GATEWAY],
                              Munch(external_gateway_info={"network_id": 1}))

    port = Munch(id="port-1", device_id="")
    assert provider.drift(resources[ROUTE_TABLE], port) == ["router interface"]

    provider.update(resources[ROUTE_TABLE], port, state)
    conn.network.add_interface_to_router.assert_called_once_with(
        state[GATEWAY], port_id="port-1")


def test_create_route_table(provider, conn, resources, state):
    conn.network.create_port.return_value = Munch(id="port-1")

    provider.create(resources[ROUTE_TABLE], state)

    kwargs = conn.network.create_port.call_args[1]
    assert kwargs["name"] == "test-rt"
    assert kwargs["fixed_ips"] == [{"ip_address": "10.0.1.1",
                                    "subnet_id": "subnet-1"}]


def test_create_server(provider, conn, resources, state):
    conn.image.images.return_value = [
        Munch(id="img-old", name="ubuntu-22.04-2023",
              created_at="2023-01-01T00:00:00Z"),
        Munch(id="img-new", name="ubuntu-22.04-2024",
              created_at="2024-01-01T00:00:00Z"),
        Munch(id="img-other", name="debian-12",
              created_at="2025-01-01T00:00:00Z")]
    conn.compute.find_flavor.return_value = Munch(id="flavor-1")
    resource = resources[INSTANCE]
    resource.properties["image_name"] = "ubuntu-22.04-*"
    resource.properties["userdata"] = "#cloud-config\n"

    provider.create(resource, state)

    kwargs = conn.compute.create_server.call_args[1]
    assert kwargs["flavor_id"] == "flavor-1"
    assert kwargs["key_name"] == "test-key"
    assert kwargs["networks"] == [{"uuid": "net-1"}]
    assert kwargs["block_device_mapping_v2"][0]["uuid"] == "img-new"
    assert base64.b64decode(kwargs["user_data"]).decode() == \
        "#cloud-config\n"


def test_no_matching_image(provider, conn):
    conn.image.images.return_value = [Munch(id="img", name="debian-12",
                                            created_at="2025")]

    with pytest.raises(BuilderError):
        provider.newest_image("ubuntu-*")


def test_wait_for_server_assigns_floating_ip(provider, conn):
    server = Munch(id="srv-1", name="test-server")
    conn.compute.wait_for_server.return_value = server
    conn.network.ports.return_value = [Munch(id="port-1")]
    conn.network.ips.return_value = []

    provider.wait_for_instance(server, 60)

    conn.network.create_ip.assert_called_once_with(
        floating_network_id="alskdqw1", port_id="port-1")

    conn.network.ips.return_value = [Munch(id="fip-1")]
    conn.network.create_ip.reset_mock()
    provider.wait_for_instance(server, 60)
    conn.network.create_ip.assert_not_called()


def test_wait_for_server_timeout(provider, conn):
    conn.compute.wait_for_server.side_effect = ResourceTimeout("slow")

    with pytest.raises(WaitTimeout):
        provider.wait_for_instance(Munch(id="srv-1", name="test-server"), 1)


def test_addresses(provider):
    server = Munch(addresses={"test-net": [
        {"addr": "10.0.1.5", "version": 4, "OS-EXT-IPS:type": "fixed"},
        {"addr": "fd00::5", "version": 6, "OS-EXT-IPS:type": "fixed"},
        {"addr": "203.0.113.5", "version": 4,
         "OS-EXT-IPS:type": "floating"}]})

    assert provider.addresses(server) == ("203.0.113.5", "10.0.1.5")
    assert provider.addresses(Munch(addresses={})) == (None, None)


def test_delete_tolerates_not_found(provider, conn, resources):
    conn.network.delete_network.side_effect = ResourceNotFound()
    provider.delete(resources[NETWORK], Munch(id="net-1"))

    conn.network.delete_network.side_effect = SDKException("in use")
    with pytest.raises(BuilderError):
        provider.delete(resources[NETWORK], Munch(id="net-1"))


def test_delete_server_releases_floating_ips(provider, conn, resources):
    server = Munch(id="srv-1", name="test-server")
    conn.network.ports.return_value = [Munch(id="port-1")]
    fip = Munch(id="fip-1", floating_ip_address="203.0.113.5")
    conn.network.ips.return_value = [fip]

    provider.delete(resources[INSTANCE], server)

    conn.network.delete_ip.assert_called_once_with(fip)
    conn.compute.delete_server.assert_called_once_with(server,
                                                       ignore_missing=False)
    conn.compute.wait_for_delete.assert_called_once_with(server)


def test_delete_server_timeout(provider, conn, resources):
    conn.network.ports.return_value = []
    conn.compute.wait_for_delete.side_effect = ResourceTimeout("slow")

    with pytest.raises(WaitTimeout):
        provider.delete(resources[INSTANCE], Munch(id="srv-1",
                                                   name="test-server"))
