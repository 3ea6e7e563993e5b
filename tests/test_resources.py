import pytest
from kubernetes.client import V1VolumeResourceRequirements

from kube_cpi import labels
from kube_cpi.errors import InvalidQuantity, MissingNetwork, UnsupportedResourceKind, UnsupportedTopology
from kube_cpi.properties import Network, Port, Resources, Service
from kube_cpi.resources import (
    add_disk_volume,
    build_config_map,
    build_disk_claim,
    build_pod,
    build_services,
    get_network,
    remove_disk_volume,
    resource_requirements,
)


def test_get_network_requires_exactly_one():
    network = Network(ip="10.0.0.5")
    assert get_network({"default": network}) == ("default", network)

    with pytest.raises(MissingNetwork):
        get_network({})
    with pytest.raises(UnsupportedTopology):
        get_network({"a": Network(), "b": Network()})


def test_resource_requirements_keep_quantities():
    requirements = resource_requirements(
        Resources(limits={"memory": "1Gi", "cpu": "500m"}, requests={"memory": "64Mi", "cpu": "100m"})
    )
    assert requirements.limits == {"memory": "1Gi", "cpu": "500m"}
    assert requirements.requests == {"memory": "64Mi", "cpu": "100m"}


def test_resource_requirements_absent_maps_stay_absent():
    requirements = resource_requirements(Resources())
    assert requirements.limits is None
    assert requirements.requests is None


def test_unsupported_resource_kind():
    with pytest.raises(UnsupportedResourceKind, match="goo is not a supported resource type"):
        resource_requirements(Resources(limits={"goo": "1"}))


def test_invalid_quantity():
    with pytest.raises(InvalidQuantity):
        resource_requirements(Resources(requests={"memory": "12nuts"}))


def test_build_disk_claim():
    claim = build_disk_claim("bosh", "disk-id", 1024)
    assert claim.metadata.name == "disk-disk-id"
    assert claim.metadata.labels == {labels.DISK_ID_LABEL: "disk-id"}
    assert claim.spec.access_modes == ["ReadWriteOnce"]
    assert isinstance(claim.spec.resources, V1VolumeResourceRequirements)
    assert claim.spec.resources.requests == {"storage": "1024Mi"}


def test_build_config_map():
    config_map = build_config_map("bosh", "agent-id", "{}")
    assert config_map.metadata.name == "agent-agent-id"
    assert config_map.metadata.labels == {labels.AGENT_ID_LABEL: "agent-id"}
    assert config_map.data == {"instance_settings": "{}"}


def test_build_services_selects_agent():
    services = build_services(
        "bosh",
        "agent-id",
        [
            Service(name="director", type="NodePort", ports=[Port(name="agent", port=6868, node_port=32068)]),
            Service(name="internal", type="LoadBalancer", cluster_ip="10.96.0.10", ports=[Port(port=53, protocol="UDP")]),
        ],
    )
    node_port, cluster_ip = services

    assert node_port.spec.type == "NodePort"
    assert node_port.spec.selector == {labels.AGENT_ID_LABEL: "agent-id"}
    assert node_port.spec.ports[0].node_port == 32068
    assert node_port.spec.ports[0].protocol == "TCP"

    assert cluster_ip.spec.type == "ClusterIP"
    assert cluster_ip.spec.cluster_ip == "10.96.0.10"
    assert cluster_ip.spec.ports[0].node_port is None
    assert cluster_ip.metadata.labels == {labels.AGENT_ID_LABEL: "agent-id"}


def test_build_pod_layout():
    pod = build_pod(
        "bosh", "agent-id", "stemcell-name", Network(ip="10.0.0.5"), Resources(limits={"memory": "1Gi"})
    )

    assert pod.metadata.name == "agent-agent-id"
    assert pod.metadata.labels == {labels.AGENT_ID_LABEL: "agent-id"}
    assert pod.metadata.annotations == {labels.IP_ADDRESS_ANNOTATION: "10.0.0.5"}
    assert pod.spec.hostname == "agent-id"

    (container,) = pod.spec.containers
    assert container.name == "bosh-job"
    assert container.image == "stemcell-name"
    assert container.image_pull_policy == "Always"
    assert container.command == ["/usr/sbin/runsvdir-start"]
    assert container.security_context.privileged is True
    assert container.security_context.run_as_user == 0
    assert container.resources.limits == {"memory": "1Gi"}

    config_mount, var_vcap_mount = container.volume_mounts
    assert config_mount.mount_path == "/var/vcap/bosh/instance_settings.json"
    assert config_mount.sub_path == "instance_settings.json"
    assert var_vcap_mount.mount_path == "/var/vcap"
    assert var_vcap_mount.sub_path == "vcap"

    config_volume, var_vcap_volume = pod.spec.volumes
    assert config_volume.config_map.name == "agent-agent-id"
    assert config_volume.config_map.items[0].key == "instance_settings"
    assert var_vcap_volume.persistent_volume_claim.claim_name == "var-vcap-agent-id"


def test_build_pod_without_ip_has_no_annotation():
    pod = build_pod("bosh", "agent-id", "stemcell-name", Network(type="dynamic"), Resources())
    assert pod.metadata.annotations == {}


def test_disk_volume_splicing():
    pod = build_pod("bosh", "agent-id", "stemcell-name", Network(), Resources())

    add_disk_volume(pod.spec, "disk-id")
    assert [v.name for v in pod.spec.volumes] == ["bosh-config", "var-vcap", "disk-disk-id"]
    assert pod.spec.volumes[-1].persistent_volume_claim.claim_name == "disk-disk-id"
    mount = pod.spec.containers[0].volume_mounts[-1]
    assert (mount.name, mount.mount_path) == ("disk-disk-id", "/mnt/disk-id")

    remove_disk_volume(pod.spec, "disk-id")
    assert [v.name for v in pod.spec.volumes] == ["bosh-config", "var-vcap"]
    assert [m.name for m in pod.spec.containers[0].volume_mounts] == ["bosh-config", "var-vcap"]


def test_removing_an_absent_disk_is_a_no_op():
    pod = build_pod("bosh", "agent-id", "stemcell-name", Network(), Resources())
    remove_disk_volume(pod.spec, "missing")
    assert len(pod.spec.volumes) == 2


def test_adding_a_present_disk_does_not_duplicate_it():
    pod = build_pod("bosh", "agent-id", "stemcell-name", Network(), Resources())

    add_disk_volume(pod.spec, "disk-id")
    add_disk_volume(pod.spec, "disk-id")

    assert [v.name for v in pod.spec.volumes] == ["bosh-config", "var-vcap", "disk-disk-id"]
    assert [m.name for m in pod.spec.containers[0].volume_mounts] == ["bosh-config", "var-vcap", "disk-disk-id"]
