"""
Resources
=========

The desired state of a k3sboot cluster as plain data.

:func:`declare_resources` turns the cluster configuration into an ordered
list of :class:`Resource` records. Every record is looked up by name in the
cloud and created only if missing, so the same list serves ``plan``,
``apply`` and, reversed, ``destroy``.
"""

NETWORK = "network"
SUBNET = "subnet"
GATEWAY = "gateway"
ROUTE_TABLE = "route-table"
SECURITY_GROUP = "security-group"
KEYPAIR = "keypair"
INSTANCE = "instance"

KINDS = (NETWORK, SUBNET, GATEWAY, ROUTE_TABLE, SECURITY_GROUP, KEYPAIR,
         INSTANCE)

# name suffix of each resource, prefixed with the cluster name
SUFFIXES = {NETWORK: "net",
            SUBNET: "subnet",
            GATEWAY: "gw",
            ROUTE_TABLE: "rt",
            SECURITY_GROUP: "sec-group",
            KEYPAIR: "key",
            INSTANCE: "server"}

# (port, description) of every public ingress rule
INGRESS_PORTS = ((22, "ssh"),
                 (6443, "kubernetes api"),
                 (80, "http"),
                 (443, "https"))


class Rule:  # pylint: disable=too-few-public-methods
    """A firewall rule of a security group.

    ``protocol`` is ``"tcp"``, ``"udp"`` or ``"all"``; for ``"all"`` the
    ports are ignored.
    """
    # pylint: disable=too-many-arguments
    def __init__(self, direction, protocol, port_min=None, port_max=None,
                 cidr="0.0.0.0/0", description=""):
        self.direction = direction
        self.protocol = protocol
        if protocol == "all":
            port_min = port_max = None
        elif port_max is None:
            port_max = port_min
        self.port_min = port_min
        self.port_max = port_max
        self.cidr = cidr
        self.description = description

    @property
    def key(self):
        """the identity of the rule, the description is not part of it"""
        return (self.direction, self.protocol, self.port_min, self.port_max,
                self.cidr)

    def __eq__(self, other):
        return isinstance(other, Rule) and self.key == other.key

    def __hash__(self):
        return hash(self.key)

    def __repr__(self):
        if self.protocol == "all":
            ports = "all"
        elif self.port_min == self.port_max:
            ports = str(self.port_min)
        else:
            ports = "%s-%s" % (self.port_min, self.port_max)
        return "<Rule %s %s/%s %s>" % (self.direction, self.protocol, ports,
                                       self.cidr)


class Resource:
    """One declared cloud resource.

    Args:
        kind (str): one of :data:`KINDS`
        name (str): the name the resource is looked up by
        depends_on (tuple): kinds that must exist before this one
        properties: the desired attributes
    """
    def __init__(self, kind, name, depends_on=(), **properties):
        if kind not in KINDS:
            raise ValueError(f"unknown resource kind {kind}")
        self.kind = kind
        self.name = name
        self.depends_on = tuple(depends_on)
        self.properties = properties

    def __getitem__(self, key):
        return self.properties[key]

    def get(self, key, default=None):
        """like ``dict.get`` on the properties"""
        return self.properties.get(key, default)

    def __repr__(self):
        return f"<Resource {self.kind} {self.name}>"


def resource_name(config, kind):
    """the name of the resource of ``kind`` in this cluster"""
    return "%s-%s" % (config["cluster-name"], SUFFIXES[kind])


def security_rules(allowed_cidr="0.0.0.0/0"):
    """The rules of the cluster security group.

    Inbound SSH, the Kubernetes API, HTTP and HTTPS from ``allowed_cidr``,
    and all outbound traffic.
    """
    rules = [Rule("ingress", "tcp", port, cidr=allowed_cidr,
                  description=desc) for port, desc in INGRESS_PORTS]
    rules.append(Rule("egress", "all", description="all outbound"))
    return rules


def declare_resources(config):
    """Build the resource graph of a cluster.

    Args:
        config (dict): a validated cluster configuration

    Returns:
        list of :class:`Resource` in creation order
    """
    net = config["network"]
    name = config["cluster-name"]

    def _name(kind):
        return resource_name(config, kind)

    return [
        Resource(NETWORK, _name(NETWORK),
                 cidr=net["cidr"]),
        Resource(SUBNET, _name(SUBNET), depends_on=(NETWORK,),
                 cidr=net["subnet-cidr"],
                 zone=config.get("availability-zone"),
                 map_public_ip_on_launch=True),
        Resource(GATEWAY, _name(GATEWAY), depends_on=(NETWORK,),
                 external_network=net.get("external-network")),
        Resource(ROUTE_TABLE, _name(ROUTE_TABLE),
                 depends_on=(NETWORK, SUBNET, GATEWAY),
                 destination="0.0.0.0/0"),
        Resource(SECURITY_GROUP, _name(SECURITY_GROUP),
                 depends_on=(NETWORK,),
                 description=f"k3sboot cluster {name}",
                 rules=security_rules(config["allowed-cidr"])),
        Resource(KEYPAIR, _name(KEYPAIR),
                 public_key_path=config["key-path"]),
        Resource(INSTANCE, _name(INSTANCE),
                 depends_on=(SUBNET, ROUTE_TABLE, SECURITY_GROUP, KEYPAIR),
                 instance_type=config["instance-type"],
                 image_name=config["image"]["name"],
                 image_owner=config["image"].get("owner"),
                 volume_size=config["volume-size"],
                 zone=config.get("availability-zone")),
    ]


class Change:  # pylint: disable=too-few-public-methods
    """A planned action on one resource.

    ``action`` is ``create``, ``update`` or ``noop``; ``detail`` lists what
    an update would change.
    """
    SYMBOLS = {"create": "+", "update": "~", "noop": " "}

    def __init__(self, action, resource, detail=None):
        if action not in self.SYMBOLS:
            raise ValueError(f"unknown action {action}")
        self.action = action
        self.resource = resource
        self.detail = detail or []

    def __str__(self):
        line = "%s %s %s" % (self.SYMBOLS[self.action], self.resource.kind,
                             self.resource.name)
        if self.detail:
            line += " (%s)" % ", ".join(str(d) for d in self.detail)
        return line

    def __repr__(self):
        return f"<Change {self.action} {self.resource.kind} {self.resource.name}>"


class Plan:
    """The difference between the declared and the live resources."""

    def __init__(self, changes):
        self.changes = list(changes)

    def _with_action(self, action):
        return [c for c in self.changes if c.action == action]

    @property
    def creates(self):
        """changes creating a resource"""
        return self._with_action("create")

    @property
    def updates(self):
        """changes updating a resource"""
        return self._with_action("update")

    @property
    def noops(self):
        """resources already in the desired state"""
        return self._with_action("noop")

    @property
    def has_changes(self):
        """True if applying would change anything"""
        return bool(self.creates or self.updates)

    def count(self, kind):
        """the number of declared resources of ``kind``"""
        return len([c for c in self.changes if c.resource.kind == kind])

    def resources(self, kind):
        """all declared resources of ``kind``"""
        return [c.resource for c in self.changes if c.resource.kind == kind]

    def summary(self):
        """one line summary like ``Plan: 7 to add, 0 to change.``"""
        if not self.has_changes:
            return "No changes. Infrastructure is up-to-date."
        return "Plan: %d to add, %d to change." % (len(self.creates),
                                                   len(self.updates))

    def __iter__(self):
        return iter(self.changes)

    def __len__(self):
        return len(self.changes)

    def __str__(self):
        lines = [str(c) for c in self.changes if c.action != "noop"]
        lines.append(self.summary())
        return "\n".join(lines)
