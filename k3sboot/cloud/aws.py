"""
functions and classes to interact with AWS EC2
"""
from functools import wraps

import boto3
from botocore.exceptions import (ClientError, NoCredentialsError,
                                 NoRegionError, WaiterError)

from k3sboot.cloud import Provider, BuilderError
from k3sboot.cloud.resources import (NETWORK, SUBNET, GATEWAY, ROUTE_TABLE,
                                     SECURITY_GROUP, KEYPAIR, Rule)
from k3sboot.ssl import read_public_key
from k3sboot.util.logger import Logger
from k3sboot.util.util import retry, WaitTimeout

LOGGER = Logger(__name__)

# EC2 rejects user data above 16 KiB before base64 encoding
USERDATA_LIMIT = 16 * 1024
CLUSTER_TAG = "k3sboot:cluster"
LIVE_STATES = ["pending", "running", "stopping", "stopped"]


def get_client(region):
    """Create an EC2 client for ``region``.

    Credentials are taken from the usual boto3 chain (environment,
    ``~/.aws/credentials``, instance profile).
    """
    try:
        return boto3.client("ec2", region_name=region)
    except NoRegionError:
        raise BuilderError("no AWS region configured, set 'region' in the "
                           "cluster file")


def error_code(exc):
    """the AWS error code of a ``ClientError``"""
    return exc.response.get("Error", {}).get("Code", "")


def api_errors(func):
    """Turn botocore errors into :class:`BuilderError`"""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except NoCredentialsError:
            raise BuilderError("no AWS credentials found, did you export "
                               "AWS_PROFILE or AWS_ACCESS_KEY_ID?")
        except (ClientError, WaiterError) as exc:
            raise BuilderError(str(exc))
    return wrapper


def to_permission(rule):
    """Convert a :class:`Rule` to an EC2 ``IpPermissions`` item"""
    perm = {"IpRanges": [{"CidrIp": rule.cidr,
                          "Description": rule.description}]}
    if rule.protocol == "all":
        perm["IpProtocol"] = "-1"
    else:
        perm.update({"IpProtocol": rule.protocol,
                     "FromPort": rule.port_min,
                     "ToPort": rule.port_max})
    return perm


def from_permissions(direction, permissions):
    """Convert EC2 ``IpPermissions`` to a list of :class:`Rule`"""
    rules = []
    for perm in permissions:
        protocol = perm["IpProtocol"]
        if protocol == "-1":
            protocol = "all"
        for ip_range in perm.get("IpRanges", []):
            rules.append(Rule(direction, protocol,
                              perm.get("FromPort"), perm.get("ToPort"),
                              ip_range["CidrIp"]))
    return rules


def first(items):
    """the first item of a list or None"""
    return items[0] if items else None


class AWSProvider(Provider):
    """Creates the cluster resources in one AWS region.

    Every resource is tagged with its ``Name`` and the cluster name, and
    looked up by these tags again.

    Args:
        config (dict): the cluster configuration
        client: an EC2 client, created from the configured region if None
    """

    name = "aws"

    def __init__(self, config, client=None):
        self.config = config
        self.cluster = config["cluster-name"]
        self.ec2 = client or get_client(config["region"])

    def _tags(self, resource_type, name):
        return [{"ResourceType": resource_type,
                 "Tags": [{"Key": "Name", "Value": name},
                          {"Key": CLUSTER_TAG, "Value": self.cluster}]}]

    def _filters(self, name):
        return [{"Name": "tag:Name", "Values": [name]},
                {"Name": "tag:%s" % CLUSTER_TAG, "Values": [self.cluster]}]

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
        except ClientError as exc:
            if not error_code(exc).endswith("NotFound"):
                raise
            LOGGER.debug("%s [%s] is already gone", resource.kind,
                         resource.name)

    def drift(self, resource, record):
        if resource.kind == SUBNET and not record.get("MapPublicIpOnLaunch"):
            return ["map_public_ip_on_launch"]

        if resource.kind == GATEWAY and not record.get("Attachments"):
            return ["vpc attachment"]

        if resource.kind == ROUTE_TABLE:
            out = []
            if not self._default_route(record, resource["destination"]):
                out.append("route %s" % resource["destination"])
            if not [a for a in record.get("Associations", [])
                    if a.get("SubnetId")]:
                out.append("subnet association")
            return out

        if resource.kind == SECURITY_GROUP:
            live = set(from_permissions("ingress",
                                        record.get("IpPermissions", [])))
            live |= set(from_permissions("egress",
                                         record.get("IpPermissionsEgress", [])))
            return [rule for rule in resource["rules"] if rule not in live]

        return []

    @api_errors
    def update(self, resource, record, state):
        missing = self.drift(resource, record)
        LOGGER.info("Updating %s [%s]: %s", resource.kind, resource.name,
                    ", ".join(str(m) for m in missing))

        if resource.kind == SUBNET:
            self._enable_public_ips(record["SubnetId"])
        elif resource.kind == GATEWAY:
            self._attach_gateway(record, state[NETWORK])
        elif resource.kind == ROUTE_TABLE:
            if "subnet association" in missing:
                self.ec2.associate_route_table(
                    RouteTableId=record["RouteTableId"],
                    SubnetId=state[SUBNET]["SubnetId"])
            if "route %s" % resource["destination"] in missing:
                self._add_default_route(record, state[GATEWAY],
                                        resource["destination"])
        elif resource.kind == SECURITY_GROUP:
            self._authorize(record["GroupId"], missing)

        return self.find(resource)

    # network (VPC)
    def _find_network(self, resource):
        return first(self.ec2.describe_vpcs(
            Filters=self._filters(resource.name))["Vpcs"])

    def _create_network(self, resource, state):  # pylint: disable=unused-argument
        vpc = self.ec2.create_vpc(
            CidrBlock=resource["cidr"],
            TagSpecifications=self._tags("vpc", resource.name))["Vpc"]
        self.ec2.get_waiter("vpc_available").wait(VpcIds=[vpc["VpcId"]])
        # one attribute per call
        self.ec2.modify_vpc_attribute(VpcId=vpc["VpcId"],
                                      EnableDnsSupport={"Value": True})
        self.ec2.modify_vpc_attribute(VpcId=vpc["VpcId"],
                                      EnableDnsHostnames={"Value": True})
        LOGGER.debug("VPC: %s", vpc)
        return vpc

    def _delete_network(self, record):
        self.ec2.delete_vpc(VpcId=record["VpcId"])

    # subnet
    def _find_subnet(self, resource):
        return first(self.ec2.describe_subnets(
            Filters=self._filters(resource.name))["Subnets"])

    def _create_subnet(self, resource, state):
        kwargs = {"VpcId": state[NETWORK]["VpcId"],
                  "CidrBlock": resource["cidr"],
                  "TagSpecifications": self._tags("subnet", resource.name)}
        if resource.get("zone"):
            kwargs["AvailabilityZone"] = resource["zone"]

        subnet = self.ec2.create_subnet(**kwargs)["Subnet"]
        if resource["map_public_ip_on_launch"]:
            self._enable_public_ips(subnet["SubnetId"])
            subnet["MapPublicIpOnLaunch"] = True
        return subnet

    def _enable_public_ips(self, subnet_id):
        self.ec2.modify_subnet_attribute(SubnetId=subnet_id,
                                         MapPublicIpOnLaunch={"Value": True})

    def _delete_subnet(self, record):
        self.ec2.delete_subnet(SubnetId=record["SubnetId"])

    # internet gateway
    def _find_gateway(self, resource):
        return first(self.ec2.describe_internet_gateways(
            Filters=self._filters(resource.name))["InternetGateways"])

    def _create_gateway(self, resource, state):
        igw = self.ec2.create_internet_gateway(
            TagSpecifications=self._tags("internet-gateway",
                                         resource.name))["InternetGateway"]
        self._attach_gateway(igw, state[NETWORK])
        igw["Attachments"] = [{"VpcId": state[NETWORK]["VpcId"],
                               "State": "available"}]
        return igw

    def _attach_gateway(self, igw, vpc):
        self.ec2.attach_internet_gateway(
            InternetGatewayId=igw["InternetGatewayId"], VpcId=vpc["VpcId"])

    def _delete_gateway(self, record):
        for attachment in record.get("Attachments", []):
            self.ec2.detach_internet_gateway(
                InternetGatewayId=record["InternetGatewayId"],
                VpcId=attachment["VpcId"])
        self.ec2.delete_internet_gateway(
            InternetGatewayId=record["InternetGatewayId"])

    # route table
    def _find_route_table(self, resource):
        return first(self.ec2.describe_route_tables(
            Filters=self._filters(resource.name))["RouteTables"])

    def _create_route_table(self, resource, state):
        table = self.ec2.create_route_table(
            VpcId=state[NETWORK]["VpcId"],
            TagSpecifications=self._tags("route-table",
                                         resource.name))["RouteTable"]
        self._add_default_route(table, state[GATEWAY],
                                resource["destination"])
        self.ec2.associate_route_table(RouteTableId=table["RouteTableId"],
                                       SubnetId=state[SUBNET]["SubnetId"])
        return self._find_route_table(resource) or table

    @staticmethod
    def _default_route(table, destination):
        return [r for r in table.get("Routes", [])
                if r.get("DestinationCidrBlock") == destination and
                r.get("GatewayId", "").startswith("igw-")]

    # a fresh gateway is not always visible to the route API right away
    @retry(ClientError, tries=4, delay=2, logger=LOGGER.debug)
    def _add_default_route(self, table, igw, destination):
        try:
            self.ec2.create_route(RouteTableId=table["RouteTableId"],
                                  DestinationCidrBlock=destination,
                                  GatewayId=igw["InternetGatewayId"])
        except ClientError as exc:
            if error_code(exc) != "RouteAlreadyExists":
                raise
            LOGGER.debug("Route %s already exists", destination)

    def _delete_route_table(self, record):
        for assoc in record.get("Associations", []):
            if not assoc.get("Main"):
                self.ec2.disassociate_route_table(
                    AssociationId=assoc["RouteTableAssociationId"])
        self.ec2.delete_route_table(RouteTableId=record["RouteTableId"])

    # security group
    def _find_security_group(self, resource):
        return first(self.ec2.describe_security_groups(
            Filters=[{"Name": "group-name", "Values": [resource.name]},
                     {"Name": "tag:%s" % CLUSTER_TAG,
                      "Values": [self.cluster]}])["SecurityGroups"])

    def _create_security_group(self, resource, state):
        group = self.ec2.create_security_group(
            GroupName=resource.name,
            Description=resource["description"],
            VpcId=state[NETWORK]["VpcId"],
            TagSpecifications=self._tags("security-group", resource.name))
        # new groups in a VPC already allow all egress
        self._authorize(group["GroupId"],
                        [r for r in resource["rules"]
                         if r.direction == "ingress"])
        return self._find_security_group(resource) or group

    def _authorize(self, group_id, rules):
        ingress = [to_permission(r) for r in rules if r.direction == "ingress"]
        egress = [to_permission(r) for r in rules if r.direction == "egress"]
        if ingress:
            LOGGER.debug("Adding ingress rules %s ...", ingress)
            self.ec2.authorize_security_group_ingress(GroupId=group_id,
                                                      IpPermissions=ingress)
        if egress:
            LOGGER.debug("Adding egress rules %s ...", egress)
            self.ec2.authorize_security_group_egress(GroupId=group_id,
                                                     IpPermissions=egress)

    def _delete_security_group(self, record):
        self.ec2.delete_security_group(GroupId=record["GroupId"])

    # key pair
    def _find_keypair(self, resource):
        try:
            return first(self.ec2.describe_key_pairs(
                KeyNames=[resource.name])["KeyPairs"])
        except ClientError as exc:
            if error_code(exc) == "InvalidKeyPair.NotFound":
                return None
            raise

    def _create_keypair(self, resource, state):  # pylint: disable=unused-argument
        public_key = read_public_key(resource["public_key_path"])
        return self.ec2.import_key_pair(
            KeyName=resource.name,
            PublicKeyMaterial=public_key.encode(),
            TagSpecifications=self._tags("key-pair", resource.name))

    def _delete_keypair(self, record):
        self.ec2.delete_key_pair(KeyName=record["KeyName"])

    # instance
    def newest_image(self, owner, pattern):
        """Find the most recent available image matching ``pattern``.

        Raises:
            BuilderError if no image matches.
        """
        kwargs = {"Filters": [{"Name": "name", "Values": [pattern]},
                              {"Name": "state", "Values": ["available"]}]}
        if owner:
            kwargs["Owners"] = [owner]

        images = self.ec2.describe_images(**kwargs)["Images"]
        if not images:
            raise BuilderError(f"no image matches {pattern}")

        image = max(images, key=lambda i: i["CreationDate"])
        LOGGER.debug("Using image %s (%s)", image["Name"], image["ImageId"])
        return image

    def _find_instance(self, resource):
        filters = self._filters(resource.name)
        filters.append({"Name": "instance-state-name", "Values": LIVE_STATES})
        reservations = self.ec2.describe_instances(
            Filters=filters)["Reservations"]
        instances = [i for r in reservations for i in r["Instances"]]
        return first(instances)

    def _create_instance(self, resource, state):
        userdata = resource["userdata"]
        if len(userdata.encode()) > USERDATA_LIMIT:
            raise BuilderError(
                "the instance user data is %d bytes, EC2 allows %d; use "
                "gitops.manifest-url instead of embedding the manifest" % (
                    len(userdata.encode()), USERDATA_LIMIT))

        image = self.newest_image(resource["image_owner"],
                                  resource["image_name"])
        kwargs = {
            "ImageId": image["ImageId"],
            "InstanceType": resource["instance_type"],
            "MinCount": 1,
            "MaxCount": 1,
            "KeyName": state[KEYPAIR]["KeyName"],
            "SubnetId": state[SUBNET]["SubnetId"],
            "SecurityGroupIds": [state[SECURITY_GROUP]["GroupId"]],
            "UserData": userdata,
            "BlockDeviceMappings": [{
                "DeviceName": image.get("RootDeviceName", "/dev/sda1"),
                "Ebs": {"VolumeSize": resource["volume_size"],
                        "VolumeType": "gp3",
                        "DeleteOnTermination": True}}],
            "TagSpecifications": self._tags("instance", resource.name),
        }
        if resource.get("zone"):
            kwargs["Placement"] = {"AvailabilityZone": resource["zone"]}

        instance = self.ec2.run_instances(**kwargs)["Instances"][0]
        LOGGER.debug("Launched instance %s", instance["InstanceId"])
        return instance

    @api_errors
    def wait_for_instance(self, record, timeout=300):
        instance_id = record["InstanceId"]
        waiter = self.ec2.get_waiter("instance_running")
        try:
            waiter.wait(InstanceIds=[instance_id],
                        WaiterConfig={"Delay": 5,
                                      "MaxAttempts": max(1, timeout // 5)})
        except WaiterError:
            raise WaitTimeout("instance %s to run" % instance_id, timeout)

        reservations = self.ec2.describe_instances(
            InstanceIds=[instance_id])["Reservations"]
        return reservations[0]["Instances"][0]

    def addresses(self, record):
        return record.get("PublicIpAddress"), record.get("PrivateIpAddress")

    def _delete_instance(self, record):
        self.ec2.terminate_instances(InstanceIds=[record["InstanceId"]])
        # the security group and subnet can only go once the ENI is gone
        self.ec2.get_waiter("instance_terminated").wait(
            InstanceIds=[record["InstanceId"]])
