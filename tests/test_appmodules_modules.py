import os
import unittest
from unittest.mock import Mock, patch

from appmodules import environment
from appmodules.environment import bind, ExecutionContext, INSTANCE_ID_ATTRIBUTE
from appmodules.errors import (AlreadyInDesiredStateError, ArgumentError, ConfigurationError,
                               InvalidVersionError, TransientError, UnexpectedFailure)
from appmodules.plumbing.admin import AdminClient
from appmodules.plumbing.common import State
from appmodules.plumbing.legacy import ErrorCode
from appmodules.tasks import modules
from appmodules.tasks.modules import ModulesService

from .channel import FakeChannel


CONTEXT = ExecutionContext("default", "v1.123", {INSTANCE_ID_ATTRIBUTE: "7"})


class ServiceTestCase(unittest.TestCase):

    def setUp(self):
        self.admin = False
        self.channel = FakeChannel()
        self.client = Mock(spec=AdminClient)
        self.factory = Mock(return_value=self.client)
        self.service = ModulesService("project", self.channel, lambda: self.admin, self.factory)
        self.binding = bind(CONTEXT)
        self.binding.__enter__()
        self.addCleanup(self.binding.__exit__, None, None, None)


class TestConstruction(unittest.TestCase):

    @patch.dict(os.environ, {"GOOGLE_CLOUD_PROJECT": "project"}, clear=True)
    def test_project_from_environ(self):
        self.assertEqual(ModulesService().project_id, "project")

    @patch.dict(os.environ, {}, clear=True)
    def test_no_project(self):
        with self.assertRaises(ConfigurationError):
            ModulesService()

    def test_no_channel(self):
        service = ModulesService("project", use_admin_api=lambda: False)
        with self.assertRaises(ConfigurationError):
            service.get_modules()

    @patch.dict(os.environ, {"GOOGLE_CLOUD_PROJECT": "project"}, clear=True)
    def test_singleton(self):
        modules.set_service(None)
        self.addCleanup(modules.set_service, None)
        service = modules.get_service()
        self.assertIs(modules.get_service(), service)
        replacement = ModulesService("other")
        modules.set_service(replacement)
        self.assertIs(modules.get_service(), replacement)


class TestContextAccessors(ServiceTestCase):

    def test_module(self):
        self.assertEqual(self.service.get_current_module_name(), "default")

    def test_version(self):
        self.assertEqual(self.service.get_current_version_name(), "v1")

    def test_instance(self):
        self.assertEqual(self.service.get_current_instance_id(), "7")


class TestRouting(ServiceTestCase):

    def test_legacy(self):
        self.channel.respond("GetModules", module=["module1", "module2"])
        self.assertEqual(self.service.get_modules(), {"module1", "module2"})
        self.factory.assert_not_called()

    def test_admin(self):
        self.admin = True
        self.client.list_services.return_value = [{"id": "default"}, {"id": "worker"}]
        self.assertEqual(self.service.get_modules(), {"default", "worker"})
        self.factory.assert_called_once_with("get_modules")
        self.assertEqual(self.channel.calls, [])

    def test_flag_read_per_call(self):
        self.channel.respond("GetModules", module=["legacy"])
        self.client.list_services.return_value = [{"id": "admin"}]
        self.assertEqual(self.service.get_modules(), {"legacy"})
        self.admin = True
        self.assertEqual(self.service.get_modules(), {"admin"})
        self.admin = False
        self.assertEqual(self.service.get_modules(), {"legacy"})
        self.assertEqual(len(self.channel.calls), 2)
        self.assertEqual(self.factory.call_count, 1)

    @patch.dict(os.environ, {"MODULES_USE_ADMIN_API": "TRUE"})
    def test_environ_flag(self):
        service = ModulesService("project", self.channel, client_factory=self.factory)
        self.client.list_services.return_value = [{"id": "default"}]
        self.assertEqual(service.get_modules(), {"default"})
        self.assertEqual(self.channel.calls, [])


class TestDefaults(ServiceTestCase):

    def test_legacy_omits_defaults(self):
        self.channel.respond("GetNumInstances", instances=3)
        self.assertEqual(self.service.get_num_instances(), 3)
        self.assertEqual(self.channel.last_request, {})

    def test_legacy_partial(self):
        self.service.get_versions("worker")
        self.assertEqual(self.channel.last_request, {"module": "worker"})

    def test_admin_fills_defaults(self):
        self.admin = True
        self.client.get_version.return_value = {"manualScaling": {"instances": 4}}
        self.assertEqual(self.service.get_num_instances(), 4)
        self.client.get_version.assert_called_once_with("project", "default", "v1")

    def test_admin_explicit(self):
        self.admin = True
        self.client.list_versions.return_value = [{"id": "v2"}]
        self.assertEqual(self.service.get_versions("worker"), {"v2"})
        self.client.list_versions.assert_called_once_with("project", "worker")

    def test_admin_unbound(self):
        self.admin = True
        token = environment._CURRENT.set(None)
        self.addCleanup(environment._CURRENT.reset, token)
        with self.assertRaises(ConfigurationError):
            self.service.get_versions()


class TestDefaultVersion(ServiceTestCase):

    def test_legacy(self):
        self.channel.respond("GetDefaultVersion", version="v2")
        self.assertEqual(self.service.get_default_version("worker"), "v2")

    def test_admin(self):
        self.admin = True
        self.client.get_service.return_value = {
            "split": {"allocations": {"v1": 0.5, "v2": 0.5}},
        }
        self.assertEqual(self.service.get_default_version(), "v1")
        self.client.get_service.assert_called_once_with("project", "default")

    def test_admin_no_split(self):
        self.admin = True
        self.client.get_service.return_value = {}
        with self.assertRaises(InvalidVersionError):
            self.service.get_default_version()


class TestSetNumInstances(ServiceTestCase):

    def test_legacy(self):
        result = self.service.set_num_instances(5, "worker", "v2")
        self.assertEqual(result.state, State.success)
        self.assertEqual(self.channel.last_request,
                         {"module": "worker", "version": "v2", "instances": 5})

    def test_admin(self):
        self.admin = True
        self.service.set_num_instances(5)
        self.client.patch_version.assert_called_once_with(
            "project", "default", "v1", {"manualScaling": {"instances": 5}},
            "manualScaling.instances")

    def test_wrong_type(self):
        with self.assertRaises(TypeError):
            self.service.set_num_instances("5")
        with self.assertRaises(TypeError):
            self.service.set_num_instances(True)
        self.assertEqual(self.channel.calls, [])

    def test_transient(self):
        self.channel.fail("SetNumInstances", ErrorCode.TRANSIENT_ERROR)
        with self.assertRaises(TransientError):
            self.service.set_num_instances(5)


class TestServingStatus(ServiceTestCase):

    def test_start_legacy(self):
        result = self.service.start_version("worker", "v2")
        self.assertEqual(result.state, State.success)
        self.assertEqual(self.channel.calls,
                         [("modules", "StartModule", {"module": "worker", "version": "v2"})])

    @patch("appmodules.plumbing.common.LOG")
    def test_start_already_started(self, log):
        self.channel.fail("StartModule", ErrorCode.UNEXPECTED_STATE)
        result = self.service.start_version()
        self.assertEqual(result.state, State.unchanged)
        log.info.assert_called_once_with(modules.STARTING_STARTED_MESSAGE)

    @patch("appmodules.plumbing.common.LOG")
    def test_stop_already_stopped(self, log):
        self.channel.fail("StopModule", ErrorCode.UNEXPECTED_STATE)
        result = self.service.stop_version()
        self.assertFalse(result)
        log.info.assert_called_once_with(modules.STOPPING_STOPPED_MESSAGE)

    def test_start_admin(self):
        self.admin = True
        self.assertTrue(self.service.start_version())
        self.client.patch_version.assert_called_once_with(
            "project", "default", "v1", {"servingStatus": "SERVING"}, "servingStatus")

    def test_stop_admin(self):
        self.admin = True
        self.service.stop_version("worker")
        self.client.patch_version.assert_called_once_with(
            "project", "worker", "v1", {"servingStatus": "STOPPED"}, "servingStatus")

    @patch("appmodules.plumbing.common.LOG")
    def test_stop_admin_already_stopped(self, log):
        self.admin = True
        self.client.patch_version.side_effect = AlreadyInDesiredStateError("stopped")
        self.assertFalse(self.service.stop_version())
        log.info.assert_called_once_with(modules.STOPPING_STOPPED_MESSAGE)

    def test_async(self):
        future = self.service.start_version_async()
        self.assertEqual(future.result().state, State.success)


class TestHostnames(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.client.get_application.return_value = {"defaultHostname": "project.appspot.com"}
        self.client.list_services.return_value = [{"id": "default"}, {"id": "worker"}]
        self.client.get_version.return_value = {"manualScaling": {"instances": 3}}

    def test_legacy_version(self):
        self.channel.respond("GetHostname", hostname="v1.default.project.appspot.com")
        self.assertEqual(self.service.get_hostname(), "v1.default.project.appspot.com")
        self.assertEqual(self.channel.last_request, {})

    def test_legacy_instance(self):
        self.service.get_hostname("worker", "v2", 2)
        self.assertEqual(self.channel.last_request,
                         {"module": "worker", "version": "v2", "instance": "2"})

    def test_admin_version(self):
        self.admin = True
        self.assertEqual(self.service.get_hostname("worker"), "v1.worker.project.appspot.com")

    def test_admin_instance(self):
        self.admin = True
        self.assertEqual(self.service.get_hostname("worker", "v2", "1"),
                         "1.v2.worker.project.appspot.com")

    def test_invalid_instance_legacy(self):
        with self.assertRaises(ArgumentError):
            self.service.get_hostname(instance="-1")
        self.assertEqual(self.channel.calls, [])

    def test_invalid_instance_admin(self):
        self.admin = True
        with self.assertRaises(ArgumentError):
            self.service.get_instance_hostname("abc")
        self.factory.assert_not_called()


class TestFailures(ServiceTestCase):

    def test_unexpected_exception(self):
        self.admin = True
        self.client.list_services.side_effect = KeyError("id")
        with self.assertRaises(UnexpectedFailure) as cm:
            self.service.get_modules()
        self.assertIsInstance(cm.exception.cause, KeyError)


if __name__ == "__main__":
    unittest.main()
