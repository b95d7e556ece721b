"""
functions and classes to interact with openstack
"""
import base64
import fnmatch

from functools import wraps

import openstack
from netaddr import IPNetwork

from openstack.exceptions import ConflictException as OSConflict
from openstack.exceptions import ResourceNotFound as OSNotFound
from openstack.exceptions import ResourceTimeout as OSTimeout
from openstack.exceptions import SDKException, ConfigException

from k3sboot.cloud import Provider, BuilderError
from k3sboot.cloud.resources import (NETWORK, SUBNET, GATEWAY, ROUTE_TABLE,
                                     SECURITY_GROUP, KEYPAIR, Rule)
from k3sboot.ssl import read_public_key
from k3sboot.util.logger import Logger
from k3sboot.util.util import WaitTimeout

LOGGER = Logger(__name__)


def get_connection():
    """Establishes an OpenStack connection.

    The cloud is taken from ``OS_CLOUD`` and ``clouds.yaml`` or from the
    ``OS_*`` variables of a sourced RC file.

    Raises:
        BuilderError if a connection could not be established.
    """
    try:
        conn = openstack.connect()
    except ConfigException as exc:
        LOGGER.error("unable to establish OpenStack Cloud connection:")
        raise BuilderError("%s - have you sourced your OpenStack RC "
                           "file?" % exc)

    if conn is None or conn.session is None:
        raise BuilderError("unable to establish OpenStack Cloud connection")

    return conn


def api_errors(func):
    """Turn openstacksdk errors into :class:`BuilderError`"""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except OSTimeout as exc:
            raise WaitTimeout(str(exc), 0)
        except SDKException as exc:
            raise BuilderError(str(exc))
    return wrapper


def rule_from_os(rule):
    """Convert a neutron security group rule to a :class:`Rule`.

    Returns None for IPv6 rules, which k3sboot does not manage.
    """
    if rule.get("ethertype", "IPv4") != "IPv4":
        return None
    return Rule(rule["direction"], rule.get("protocol") or "all",
                rule.get("port_range_min"), rule.get("port_range_max"),
                rule.get("remote_ip_prefix") or "0.0.0.0/0")


def find_external_network(conn, name=None):
    """Finds and returns an external network in OpenStack.

    If ``name`` is given only the external network with that name is
    considered, otherwise the first external network found is returned.

    Raises:
        BuilderError if no external network matches.
    """
    ext_networks = list(conn.network.networks(is_router_external=True))
    if name:
        ext_networks = [x for x in ext_networks if x.name == name]

    if not ext_networks:
        raise BuilderError("no external network %sfound" % (
            "%s " % name if name else ""))

    return ext_networks[0]


class OpenStackProvider(Provider):
    """Creates the cluster resources in an OpenStack project.

    The internet gateway maps to a router with an external gateway and the
    route table to the router port in the cluster subnet. The server gets a
    floating IP from the external network once it is active.

    Args:
        config (dict): the cluster configuration
        conn: an OpenStack connection, created with :func:`get_connection`
            if None
    """

    name = "openstack"

    def __init__(self, config, conn=None):
        self.config = config
        self.conn = conn or get_connection()
        self._ext_net = None

    @property
    def ext_net(self):
        """the external network for the router and the floating IP"""
        if self._ext_net is None:
            self._ext_net = find_external_network(
                self.conn, self.config["network"].get("external-network"))
        return self._ext_net

    def _dispatch(self, action, kind):
        return getattr(self, "_%s_%s" % (action, kind.replace("-", "_")))

    @api_errors
    def find(self, resource):
        return self._dispatch("find", resource.kind)(resource)

    @api_errors
    def create(self, resource, state):
        LOGGER.info("Creating %s [%s] ...", resource.kind, resource.name)
        return self._dispatch("create", resource.kind)(resource, state)

    @api_errors
    def delete(self, resource, record):
        LOGGER.info("Deleting %s [%s] ...", resource.kind, resource.name)
        try:
            self._dispatch("delete", resource.kind)(record)
        except OSNotFound:
            LOGGER.debug("%s [%s] is already gone", resource.kind,
                         resource.name)

    def drift(self, resource, record):
        if resource.kind == GATEWAY and not record.get("external_gateway_info"):
            return ["external gateway"]

        if resource.kind == ROUTE_TABLE and not record.get("device_id"):
            return ["router interface"]

        if resource.kind == SECURITY_GROUP:
            live = {rule_from_os(r)
                    for r in record.get("security_group_rules") or []}
            return [rule for rule in resource["rules"] if rule not in live]

        return []

    @api_errors
    def update(self, resource, record, state):
        missing = self.drift(resource, record)
        LOGGER.info("Updating %s [%s]: %s", resource.kind, resource.name,
                    ", ".join(str(m) for m in missing))

        if resource.kind == GATEWAY:
            self.conn.network.update_router(
                record,
                external_gateway_info={"network_id": self.ext_net.id})
        elif resource.kind == ROUTE_TABLE:
            self.conn.network.add_interface_to_router(state[GATEWAY],
                                                      port_id=record.id)
        elif resource.kind == SECURITY_GROUP:
            for rule in missing:
                self.add_sec_rule(record.id, rule)

        return self.find(resource)

    # network
    def _find_network(self, resource):
        return self.conn.network.find_network(resource.name)

    def _create_network(self, resource, state):  # pylint: disable=unused-argument
        network = self.conn.network.create_network(name=resource.name,
                                                   admin_state_up=True)
        LOGGER.debug("Network: %s", network)
        return network

    def _delete_network(self, record):
        self.conn.network.delete_network(record, ignore_missing=False)

    # subnet
    def _find_subnet(self, resource):
        return self.conn.network.find_subnet(resource.name)

    def _create_subnet(self, resource, state):
        subnet = self.conn.network.create_subnet(
            name=resource.name,
            ip_version=4,
            network_id=state[NETWORK].id,
            cidr=resource["cidr"])
        LOGGER.debug("Subnet: %s", subnet)
        return subnet

    def _delete_subnet(self, record):
        self.conn.network.delete_subnet(record, ignore_missing=False)

    # gateway, a router with an external gateway
    def _find_gateway(self, resource):
        return self.conn.network.find_router(resource.name)

    def _create_gateway(self, resource, state):  # pylint: disable=unused-argument
        router = self.conn.network.create_router(
            name=resource.name,
            admin_state_up=True,
            external_gateway_info={"network_id": self.ext_net.id})
        LOGGER.debug("Router: %s", router)
        return router

    def _delete_gateway(self, record):
        self.conn.network.delete_router(record, ignore_missing=False)

    # route table, the router port in the cluster subnet
    def _find_route_table(self, resource):
        return self.conn.network.find_port(resource.name)

    def _create_route_table(self, resource, state):
        subnet = state[SUBNET]
        router_ip = IPNetwork(subnet["cidr"])[1]
        fixed_ips = [{"ip_address": str(router_ip),
                      "subnet_id": subnet["id"]}]
        LOGGER.debug("Creating new Port for Router ...")
        port = self.conn.network.create_port(name=resource.name,
                                             network_id=state[NETWORK].id,
                                             admin_state_up=True,
                                             fixed_ips=fixed_ips)
        LOGGER.debug("Attaching Port to Router as interface ...")
        self.conn.network.add_interface_to_router(state[GATEWAY],
                                                  port_id=port.id)
        return self.conn.network.get_port(port.id)

    def _delete_route_table(self, record):
        if record.get("device_id"):
            # removing the interface deletes the port too
            self.conn.network.remove_interface_from_router(
                record["device_id"], port_id=record["id"])
        else:
            self.conn.network.delete_port(record, ignore_missing=False)

    # security group
    def _find_security_group(self, resource):
        return self.conn.network.find_security_group(resource.name)

    def _create_security_group(self, resource, state):  # pylint: disable=unused-argument
        secgroup = self.conn.network.create_security_group(
            name=resource.name, description=resource["description"])
        live = {rule_from_os(r)
                for r in secgroup.get("security_group_rules") or []}
        for rule in resource["rules"]:
            if rule not in live:
                self.add_sec_rule(secgroup.id, rule)
        return self.conn.network.get_security_group(secgroup.id)

    def add_sec_rule(self, group_id, rule):
        """Adds a security group rule."""
        kwargs = {"security_group_id": group_id,
                  "direction": rule.direction,
                  "ethertype": "IPv4",
                  "remote_ip_prefix": rule.cidr}
        if rule.protocol != "all":
            kwargs.update({"protocol": rule.protocol,
                           "port_range_min": rule.port_min,
                           "port_range_max": rule.port_max})
        if rule.description:
            kwargs["description"] = rule.description
        try:
            LOGGER.debug("Adding rule %s ...", str(kwargs))
            self.conn.network.create_security_group_rule(**kwargs)
        except OSConflict:
            LOGGER.debug("Rule %s already exists", rule)

    def _delete_security_group(self, record):
        self.conn.network.delete_security_group(record, ignore_missing=False)

    # keypair
    def _find_keypair(self, resource):
        return self.conn.compute.find_keypair(resource.name)

    def _create_keypair(self, resource, state):  # pylint: disable=unused-argument
        return self.conn.compute.create_keypair(
            name=resource.name,
            public_key=read_public_key(resource["public_key_path"]))

    def _delete_keypair(self, record):
        self.conn.compute.delete_keypair(record, ignore_missing=False)

    # server
    def newest_image(self, pattern):
        """Find the most recent active image whose name matches ``pattern``

        Raises:
            BuilderError if no image matches.
        """
        images = [i for i in self.conn.image.images(status="active")
                  if fnmatch.fnmatch(i.name or "", pattern)]
        if not images:
            raise BuilderError(f"no image matches {pattern}")
        image = max(images, key=lambda i: i.created_at or "")
        LOGGER.debug("Using image %s (%s)", image.name, image.id)
        return image

    def _find_instance(self, resource):
        return self.conn.compute.find_server(resource.name)

    def _create_instance(self, resource, state):
        image = self.newest_image(resource["image_name"])
        flavor = self.conn.compute.find_flavor(resource["instance_type"],
                                               ignore_missing=False)
        volume = {"boot_index": 0,
                  "uuid": image.id,
                  "source_type": "image",
                  "destination_type": "volume",
                  "volume_size": resource["volume_size"],
                  "delete_on_termination": True}
        kwargs = dict(
            name=resource.name,
            flavor_id=flavor.id,
            networks=[{"uuid": state[NETWORK].id}],
            key_name=state[KEYPAIR].name,
            security_groups=[{"name": state[SECURITY_GROUP].name}],
            user_data=base64.b64encode(
                resource["userdata"].encode()).decode(),
            block_device_mapping_v2=[volume])
        if resource.get("zone"):
            kwargs["availability_zone"] = resource["zone"]

        server = self.conn.compute.create_server(**kwargs)
        LOGGER.debug("Created server %s", server.id)
        return server

    @api_errors
    def wait_for_instance(self, record, timeout=300):
        try:
            server = self.conn.compute.wait_for_server(record, wait=timeout)
        except OSTimeout:
            raise WaitTimeout("server %s to become active" % record.name,
                              timeout)

        self.ensure_floating_ip(server)
        return self.conn.compute.get_server(server.id)

    def ensure_floating_ip(self, server):
        """Associate a floating IP with the server port unless it has one"""
        ports = list(self.conn.network.ports(device_id=server.id))
        if not ports:
            raise BuilderError("server %s has no network port" % server.name)

        fips = list(self.conn.network.ips(port_id=ports[0].id))
        if fips:
            return fips[0]

        LOGGER.info("Assigning floating IP to [%s] ...", server.name)
        return self.conn.network.create_ip(
            floating_network_id=self.ext_net.id, port_id=ports[0].id)

    def addresses(self, record):
        public, private = None, None
        for addrs in (record.get("addresses") or {}).values():
            for addr in addrs:
                if addr.get("OS-EXT-IPS:type") == "floating":
                    public = public or addr["addr"]
                elif addr.get("version", 4) == 4:
                    private = private or addr["addr"]
        return public, private

    def _delete_instance(self, record):
        for port in self.conn.network.ports(device_id=record.id):
            for fip in self.conn.network.ips(port_id=port.id):
                LOGGER.debug("Releasing floating IP %s", fip.floating_ip_address)
                self.conn.network.delete_ip(fip)

        self.conn.compute.delete_server(record, ignore_missing=False)
        # ports of a deleted server block the subnet and security group
        self.conn.compute.wait_for_delete(record)
