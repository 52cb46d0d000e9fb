"""Tests for the grant, revoke, and configure workflows."""

import stat
from unittest.mock import AsyncMock, patch

import pytest

from kubetls.access import names
from kubetls.access.configure import configure_client
from kubetls.access.entities import GroupInfo, ServiceAccountInfo, UserInfo
from kubetls.access.errors import (
    ClientCredentialsNotFoundError,
    MultiAccessError,
    RequiredArgsError,
    ServerValidationError,
)
from kubetls.access.grant import grant_access
from kubetls.access.revoke import revoke_access
from kubetls.kube.client import Secret, labels_to_selector
from kubetls.kube.errors import KubernetesAPIError, NamespaceNotFoundError, ServiceAccountNotFoundError
from kubetls.server.errors import ServerCredentialsRemovalError
from kubetls.server.provision import provision_server_certificates, remove_server_certificates
from kubetls.tls.certificates import load_certificate
from kubetls.tls.errors import CANotFoundError

SERVER_NAMESPACE = "tls-server"


@pytest.fixture
async def provisioned_kube(deployed_kube, tls_options):
    """Fake cluster with a running server and its CA provisioned."""
    await provision_server_certificates(deployed_kube, tls_options, SERVER_NAMESPACE)
    return deployed_kube


class TestProvision:
    """Test server certificate provisioning."""

    @pytest.mark.asyncio
    async def test_creates_ca_and_server_secrets(self, fake_kube, tls_options):
        """Test the CA goes to the CA namespace and the server pair next to the server."""
        result = await provision_server_certificates(
            fake_kube, tls_options, SERVER_NAMESPACE, dns_names=["tls-server.tls-server.svc"]
        )

        ca = fake_kube.secrets[(result.ca.namespace, result.ca.name)]
        server = fake_kube.secrets[(result.server.namespace, result.server.name)]
        assert result.ca.namespace == "kube-system"
        assert result.ca.name == names.ca_secret_name(SERVER_NAMESPACE)
        assert result.server.namespace == SERVER_NAMESPACE
        assert ca.labels["kubetls.io/credentials-type"] == "ca"
        assert set(server.data) == {"server.crt", "server.pem", "server.pub", "ca.crt"}
        load_certificate(server.data["server.crt"]).verify_directly_issued_by(load_certificate(ca.data["ca.crt"]))

    @pytest.mark.asyncio
    async def test_missing_namespace(self, fake_kube, tls_options):
        """Test provisioning into a namespace that does not exist writes nothing."""
        with pytest.raises(NamespaceNotFoundError):
            await provision_server_certificates(fake_kube, tls_options, "missing")

        assert fake_kube.secrets == {}

    @pytest.mark.asyncio
    async def test_missing_service_account(self, fake_kube, tls_options):
        """Test the server's service account must exist when given."""
        with pytest.raises(ServiceAccountNotFoundError):
            await provision_server_certificates(fake_kube, tls_options, SERVER_NAMESPACE, service_account="server")

        fake_kube.service_accounts.add((SERVER_NAMESPACE, "server"))
        await provision_server_certificates(fake_kube, tls_options, SERVER_NAMESPACE, service_account="server")


class TestRemoveServerCertificates:
    """Test removing the server's CA and certificate secrets."""

    @pytest.mark.asyncio
    async def test_removes_ca_and_server_secrets(self, fake_kube, tls_options):
        """Test both credential secrets are deleted and unrelated secrets are kept."""
        provisioned = await provision_server_certificates(fake_kube, tls_options, SERVER_NAMESPACE)
        await fake_kube.create_secret(Secret(name="unrelated", namespace=SERVER_NAMESPACE))

        removed = await remove_server_certificates(fake_kube, SERVER_NAMESPACE)

        assert set(removed) == {provisioned.ca, provisioned.server}
        assert list(fake_kube.secrets) == [(SERVER_NAMESPACE, "unrelated")]

    @pytest.mark.asyncio
    async def test_allows_provisioning_again(self, fake_kube, tls_options):
        """Test a namespace can be provisioned again once its credentials are removed."""
        first = await provision_server_certificates(fake_kube, tls_options, SERVER_NAMESPACE)
        old_ca = fake_kube.secrets[(first.ca.namespace, first.ca.name)].data["ca.crt"]

        await remove_server_certificates(fake_kube, SERVER_NAMESPACE)
        second = await provision_server_certificates(fake_kube, tls_options, SERVER_NAMESPACE)

        assert fake_kube.secrets[(second.ca.namespace, second.ca.name)].data["ca.crt"] != old_ca

    @pytest.mark.asyncio
    async def test_only_matching_namespace(self, fake_kube, tls_options):
        """Test credentials of another server namespace are left alone."""
        fake_kube.namespaces.add("other-server")
        await provision_server_certificates(fake_kube, tls_options, SERVER_NAMESPACE)
        other = await provision_server_certificates(fake_kube, tls_options, "other-server")

        await remove_server_certificates(fake_kube, SERVER_NAMESPACE)

        assert set(fake_kube.secrets) == {
            (other.ca.namespace, other.ca.name),
            (other.server.namespace, other.server.name),
        }

    @pytest.mark.asyncio
    async def test_nothing_to_remove(self, fake_kube):
        assert await remove_server_certificates(fake_kube, SERVER_NAMESPACE) == []

    @pytest.mark.asyncio
    async def test_collects_errors(self, fake_kube, tls_options):
        """Test a failed deletion does not stop the rest and is reported at the end."""
        provisioned = await provision_server_certificates(fake_kube, tls_options, SERVER_NAMESPACE)
        real_delete = fake_kube.delete_secret

        async def delete_secret(namespace, name):
            if namespace == provisioned.ca.namespace:
                raise KubernetesAPIError("forbidden", status_code=403, reason="Forbidden")
            await real_delete(namespace, name)

        with patch.object(fake_kube, "delete_secret", AsyncMock(side_effect=delete_secret)):
            with pytest.raises(ServerCredentialsRemovalError) as exc_info:
                await remove_server_certificates(fake_kube, SERVER_NAMESPACE)

        assert exc_info.value.namespace == SERVER_NAMESPACE
        assert len(exc_info.value.errors) == 1
        assert (provisioned.ca.namespace, provisioned.ca.name) in fake_kube.secrets
        assert (provisioned.server.namespace, provisioned.server.name) not in fake_kube.secrets


class TestGrant:
    """Test granting access."""

    @pytest.mark.asyncio
    async def test_requires_identity(self, provisioned_kube, tls_options):
        """Test granting to nobody is a required-argument error."""
        with pytest.raises(RequiredArgsError):
            await grant_access(provisioned_kube, tls_options, SERVER_NAMESPACE, [])

    @pytest.mark.asyncio
    async def test_requires_server(self, fake_kube, tls_options):
        """Test grant refuses when no server pods are visible."""
        with pytest.raises(ServerValidationError):
            await grant_access(fake_kube, tls_options, SERVER_NAMESPACE, [UserInfo("alice")])

    @pytest.mark.asyncio
    async def test_grant_user(self, provisioned_kube, tls_options):
        """Test one identity gets a discoverable client secret, a role and a binding."""
        entity = UserInfo("alice")

        results = await grant_access(provisioned_kube, tls_options, SERVER_NAMESPACE, [entity])

        assert [r.succeeded for r in results] == [True]
        selector = labels_to_selector(names.client_labels(entity, SERVER_NAMESPACE))
        secrets = await provisioned_kube.list_secrets(SERVER_NAMESPACE, selector)
        assert [s.name for s in secrets] == [names.client_secret_name(entity)]
        assert set(secrets[0].data) == {"client.crt", "client.pem", "client.pub", "ca.crt"}

        cert = load_certificate(secrets[0].data["client.crt"])
        cert.verify_directly_issued_by(load_certificate(secrets[0].data["ca.crt"]))
        assert cert.subject.rfc4514_string().startswith("CN=alice")

        role = provisioned_kube.roles[(SERVER_NAMESPACE, names.role_name(entity, SERVER_NAMESPACE))]
        secret_rule = next(r for r in role["rules"] if r["resources"] == ["secrets"])
        assert secret_rule["resourceNames"] == [names.client_secret_name(entity)]
        assert secret_rule["verbs"] == ["get"]
        assert any(r["resources"] == ["pods/portforward"] for r in role["rules"])

        binding = provisioned_kube.role_bindings[(SERVER_NAMESPACE, names.role_binding_name(entity, SERVER_NAMESPACE))]
        assert binding["subjects"] == [entity.subject()]
        assert binding["roleRef"]["name"] == role["metadata"]["name"]

    @pytest.mark.asyncio
    async def test_ca_missing_reported_per_identity(self, deployed_kube, tls_options):
        """Test a missing CA fails every identity with a lookup error and writes nothing."""
        with pytest.raises(MultiAccessError) as exc_info:
            await grant_access(deployed_kube, tls_options, SERVER_NAMESPACE, [UserInfo("alice"), GroupInfo("ops")])

        assert set(exc_info.value.errors) == {"alice", "ops"}
        assert all(isinstance(errors[0], CANotFoundError) for errors in exc_info.value.errors.values())
        assert deployed_kube.secrets == {}
        assert deployed_kube.roles == {}

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_successes(self, provisioned_kube, tls_options):
        """Test one identity failing does not stop or undo the others."""
        taken = GroupInfo("ops")
        provisioned_kube.secrets[(SERVER_NAMESPACE, names.client_secret_name(taken))] = Secret(
            name=names.client_secret_name(taken), namespace=SERVER_NAMESPACE
        )

        with pytest.raises(MultiAccessError) as exc_info:
            await grant_access(
                provisioned_kube,
                tls_options,
                SERVER_NAMESPACE,
                [taken, UserInfo("alice"), ServiceAccountInfo("default", "ci")],
            )

        assert list(exc_info.value.errors) == ["ops"]
        assert (SERVER_NAMESPACE, names.role_name(UserInfo("alice"), SERVER_NAMESPACE)) in provisioned_kube.roles
        sa_role = names.role_name(ServiceAccountInfo("default", "ci"), SERVER_NAMESPACE)
        assert (SERVER_NAMESPACE, sa_role) in provisioned_kube.roles


class TestRevoke:
    """Test revoking access."""

    @pytest.mark.asyncio
    async def test_requires_identity(self, provisioned_kube):
        with pytest.raises(RequiredArgsError):
            await revoke_access(provisioned_kube, SERVER_NAMESPACE, [])

    @pytest.mark.asyncio
    async def test_revoke_removes_everything(self, provisioned_kube, tls_options):
        """Test revoke deletes the role, binding and client secret of each identity."""
        alice, bob = UserInfo("alice"), UserInfo("bob")
        await grant_access(provisioned_kube, tls_options, SERVER_NAMESPACE, [alice, bob])

        results = await revoke_access(provisioned_kube, SERVER_NAMESPACE, [alice])

        assert results[0].secret_name == names.client_secret_name(alice)
        assert (SERVER_NAMESPACE, names.client_secret_name(alice)) not in provisioned_kube.secrets
        assert (SERVER_NAMESPACE, names.role_name(alice, SERVER_NAMESPACE)) not in provisioned_kube.roles
        assert (SERVER_NAMESPACE, names.role_binding_name(alice, SERVER_NAMESPACE)) not in provisioned_kube.role_bindings
        # Others are untouched, as are the server's own secrets
        assert (SERVER_NAMESPACE, names.client_secret_name(bob)) in provisioned_kube.secrets
        assert (SERVER_NAMESPACE, names.server_secret_name(SERVER_NAMESPACE)) in provisioned_kube.secrets

    @pytest.mark.asyncio
    async def test_failures_collected_and_processing_continues(self, provisioned_kube, tls_options):
        """Test a failed delete is reported while the remaining resources are still removed."""
        alice = UserInfo("alice")
        await grant_access(provisioned_kube, tls_options, SERVER_NAMESPACE, [alice])

        failing = AsyncMock(side_effect=KubernetesAPIError("forbidden", status_code=403, reason="Forbidden"))
        with patch.object(provisioned_kube, "delete_role", failing):
            with pytest.raises(MultiAccessError) as exc_info:
                await revoke_access(provisioned_kube, SERVER_NAMESPACE, [alice])

        assert list(exc_info.value.errors) == ["alice"]
        assert exc_info.value.errors["alice"][0].status_code == 403
        assert (SERVER_NAMESPACE, names.client_secret_name(alice)) not in provisioned_kube.secrets
        assert (SERVER_NAMESPACE, names.role_binding_name(alice, SERVER_NAMESPACE)) not in provisioned_kube.role_bindings

    @pytest.mark.asyncio
    async def test_revoke_never_granted(self, provisioned_kube):
        """Test revoking an identity with nothing to remove succeeds."""
        results = await revoke_access(provisioned_kube, SERVER_NAMESPACE, [GroupInfo("nobody")])

        assert results[0].succeeded


class TestConfigure:
    """Test downloading client credentials."""

    @pytest.mark.asyncio
    async def test_writes_credentials(self, provisioned_kube, tls_options, tmp_path):
        """Test the CA, cert and key land in the home dir with the right modes."""
        entity = ServiceAccountInfo("default", "ci")
        await grant_access(provisioned_kube, tls_options, SERVER_NAMESPACE, [entity])
        home = tmp_path / "home"

        env_path = await configure_client(provisioned_kube, home, SERVER_NAMESPACE, entity)

        secret = provisioned_kube.secrets[(SERVER_NAMESPACE, names.client_secret_name(entity))]
        assert (home / "ca.pem").read_bytes() == secret.data["ca.crt"]
        assert (home / "cert.pem").read_bytes() == secret.data["client.crt"]
        assert (home / "key.pem").read_bytes() == secret.data["client.pem"]
        assert stat.S_IMODE((home / "key.pem").stat().st_mode) == 0o600
        assert stat.S_IMODE((home / "cert.pem").stat().st_mode) == 0o644
        assert stat.S_IMODE(env_path.stat().st_mode) == 0o700
        env = env_path.read_text()
        assert f"export KUBETLS_HOME={home.resolve()}" in env
        assert f"export KUBETLS_SERVER_NAMESPACE={SERVER_NAMESPACE}" in env

    @pytest.mark.asyncio
    async def test_not_granted(self, provisioned_kube, tmp_path):
        """Test an identity without a client secret gets an actionable error."""
        with pytest.raises(ClientCredentialsNotFoundError) as exc_info:
            await configure_client(provisioned_kube, tmp_path, SERVER_NAMESPACE, UserInfo("mallory"))

        assert exc_info.value.name == names.client_secret_name(UserInfo("mallory"))
        assert not (tmp_path / "key.pem").exists()

    @pytest.mark.asyncio
    async def test_requires_server(self, fake_kube, tmp_path):
        """Test configure refuses when the server is not deployed."""
        with pytest.raises(ServerValidationError):
            await configure_client(fake_kube, tmp_path, SERVER_NAMESPACE, UserInfo("alice"))
