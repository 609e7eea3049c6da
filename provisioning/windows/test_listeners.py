# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import unittest

from provisioning.windows._endpoints import EndpointSpec
from provisioning.windows._endpoints import EndpointTable
from provisioning.windows._listeners import AdapterAddressTimeout
from provisioning.windows._listeners import AmbiguousListener
from provisioning.windows._listeners import CreateListener
from provisioning.windows._listeners import DeleteListener
from provisioning.windows._listeners import Listener
from provisioning.windows._listeners import ListenerReconciler
from provisioning.windows._listeners import ListenerStore
from provisioning.windows._listeners import PortForward
from provisioning.windows._listeners import plan_listener

_external_address = '192.168.56.10'


class _InMemoryStore(ListenerStore):

    def __init__(self, adapters, address_after_polls=0):
        self.friendly_names = {}
        self.adapters = dict(adapters)
        self.listeners = []
        self.forwards = {}
        self.mutations = []
        self._polls_left = address_after_polls

    def get_friendly_name(self, thumbprint):
        return self.friendly_names.get(thumbprint, '')

    def set_friendly_name(self, thumbprint, name):
        self.mutations.append(('rename', thumbprint, name))
        self.friendly_names[thumbprint] = name

    def adapter_ipv4_address(self, adapter_name):
        if self._polls_left > 0:
            self._polls_left -= 1
            return None
        return self.adapters.get(adapter_name)

    def list_https_listeners(self):
        return list(self.listeners)

    def delete_listener(self, listener):
        self.mutations.append(('delete', listener))
        self.listeners.remove(listener)

    def create_listener(self, listener):
        self.mutations.append(('create', listener))
        self.listeners.append(listener)

    def list_port_forwards(self):
        return [
            PortForward(*listen, *connect)
            for listen, connect in self.forwards.items()
            ]

    def add_port_forward(self, rule):
        self.mutations.append(('forward', rule))
        self.forwards[rule.listen_address, rule.listen_port] = (rule.connect_address, rule.connect_port)


class _ListenerTestCase(unittest.TestCase):

    def setUp(self):
        self.table = EndpointTable([
            EndpointSpec('cbt-sha1'),
            EndpointSpec('cbt-sha256'),
            ], 29900)
        self.endpoint = self.table['cbt-sha256']
        self.store = _InMemoryStore({
            'Microsoft KM-TEST Loopback Adapter': '169.254.10.1',
            'Microsoft KM-TEST Loopback Adapter #2': '169.254.20.2',
            })
        self.reconciler = ListenerReconciler(
            self.store, _external_address, address_timeout_sec=5, poll_interval_sec=0)


class TestReconcile(_ListenerTestCase):

    def test_from_scratch(self):
        self.assertTrue(self.reconciler.reconcile(self.endpoint, 'AB12'))
        self.assertEqual(self.store.friendly_names, {'AB12': 'test_cbt-sha256_29902'})
        self.assertEqual(self.store.listeners, [Listener('IP:169.254.20.2', 29903, 'AB12')])
        self.assertEqual(
            self.store.list_port_forwards(),
            [PortForward(_external_address, 29902, '169.254.20.2', 29903)])

    def test_second_run_changes_nothing(self):
        self.reconciler.reconcile(self.endpoint, 'AB12')
        self.store.mutations.clear()
        self.assertFalse(self.reconciler.reconcile(self.endpoint, 'AB12'))
        self.assertEqual(self.store.mutations, [])

    def test_all_endpoints_twice(self):
        thumbprints = {'cbt-sha1': 'AB12', 'cbt-sha256': 'CD34'}
        for endpoint in self.table:
            self.assertTrue(self.reconciler.reconcile(endpoint, thumbprints[endpoint.test_name]))
        for endpoint in self.table:
            self.assertFalse(self.reconciler.reconcile(endpoint, thumbprints[endpoint.test_name]))
        self.assertEqual(len(self.store.listeners), 2)
        self.assertEqual(len(self.store.forwards), 2)

    def test_other_certificate(self):
        self.reconciler.reconcile(self.endpoint, 'AB12')
        self.store.mutations.clear()
        self.assertTrue(self.reconciler.reconcile(self.endpoint, 'CD34'))
        deletions = [m for m in self.store.mutations if m[0] == 'delete']
        creations = [m for m in self.store.mutations if m[0] == 'create']
        self.assertEqual(deletions, [('delete', Listener('IP:169.254.20.2', 29903, 'AB12'))])
        self.assertEqual(creations, [('create', Listener('IP:169.254.20.2', 29903, 'CD34'))])
        self.assertEqual(self.store.listeners, [Listener('IP:169.254.20.2', 29903, 'CD34')])

    def test_address_changed(self):
        self.reconciler.reconcile(self.endpoint, 'AB12')
        self.store.adapters['Microsoft KM-TEST Loopback Adapter #2'] = '169.254.30.3'
        self.assertTrue(self.reconciler.reconcile(self.endpoint, 'AB12'))
        self.assertEqual(self.store.listeners, [Listener('IP:169.254.30.3', 29903, 'AB12')])
        self.assertEqual(
            self.store.list_port_forwards(),
            [PortForward(_external_address, 29902, '169.254.30.3', 29903)])

    def test_friendly_name_only(self):
        self.reconciler.reconcile(self.endpoint, 'AB12')
        self.store.friendly_names['AB12'] = 'Something else'
        self.store.mutations.clear()
        self.assertTrue(self.reconciler.reconcile(self.endpoint, 'AB12'))
        self.assertEqual(self.store.mutations, [('rename', 'AB12', 'test_cbt-sha256_29902')])

    def test_other_port_untouched(self):
        foreign = Listener('IP:169.254.10.1', 29901, 'EF56')
        self.store.listeners.append(foreign)
        self.reconciler.reconcile(self.endpoint, 'AB12')
        self.assertIn(foreign, self.store.listeners)

    def test_several_on_port(self):
        self.store.listeners.append(Listener('IP:169.254.20.2', 29903, 'AB12'))
        self.store.listeners.append(Listener('IP:169.254.10.1', 29903, 'CD34'))
        with self.assertRaises(AmbiguousListener):
            self.reconciler.reconcile(self.endpoint, 'AB12')
        self.assertFalse([m for m in self.store.mutations if m[0] in ('delete', 'create')])


class TestPortForwardDrift(_ListenerTestCase):

    def test_drift_repaired(self):
        self.reconciler.reconcile(self.endpoint, 'AB12')
        self.store.forwards[_external_address, 29902] = ('169.254.99.99', 29903)
        self.store.mutations.clear()
        self.assertTrue(self.reconciler.reconcile(self.endpoint, 'AB12'))
        self.assertEqual(
            self.store.mutations,
            [('forward', PortForward(_external_address, 29902, '169.254.20.2', 29903))])

    def test_missing_forward_restored(self):
        self.reconciler.reconcile(self.endpoint, 'AB12')
        self.store.forwards.clear()
        self.assertTrue(self.reconciler.reconcile(self.endpoint, 'AB12'))
        self.assertEqual(len(self.store.forwards), 1)


class TestAddressPolling(unittest.TestCase):

    def test_address_appears_later(self):
        store = _InMemoryStore({'Microsoft KM-TEST Loopback Adapter': '169.254.10.1'}, address_after_polls=3)
        table = EndpointTable([EndpointSpec('cbt-sha1')], 29900)
        reconciler = ListenerReconciler(store, _external_address, address_timeout_sec=5, poll_interval_sec=0)
        self.assertTrue(reconciler.reconcile(table['cbt-sha1'], 'AB12'))
        self.assertEqual(store.listeners, [Listener('IP:169.254.10.1', 29901, 'AB12')])

    def test_timeout(self):
        store = _InMemoryStore({})
        table = EndpointTable([EndpointSpec('cbt-sha1')], 29900)
        reconciler = ListenerReconciler(store, _external_address, address_timeout_sec=0.05, poll_interval_sec=0.01)
        with self.assertRaises(AdapterAddressTimeout):
            reconciler.reconcile(table['cbt-sha1'], 'AB12')
        self.assertEqual(store.listeners, [])


class TestPlan(unittest.TestCase):

    _desired = Listener('IP:169.254.1.1', 29903, 'AB12')

    def test_absent(self):
        [actions, changed] = plan_listener(self._desired, None)
        self.assertTrue(changed)
        [action] = actions
        self.assertIsInstance(action, CreateListener)
        self.assertEqual(action.listener, self._desired)

    def test_matching(self):
        self.assertEqual(plan_listener(self._desired, self._desired), ([], False))

    def test_other_address(self):
        observed = self._desired._replace(address='IP:169.254.2.2')
        actions, changed = plan_listener(self._desired, observed)
        self.assertTrue(changed)
        self.assertEqual(actions, [DeleteListener(observed), CreateListener(self._desired)])
        self.assertEqual([type(a) for a in actions], [DeleteListener, CreateListener])

    def test_other_thumbprint(self):
        observed = self._desired._replace(thumbprint='CD34')
        actions, changed = plan_listener(self._desired, observed)
        self.assertTrue(changed)
        self.assertEqual(actions, [DeleteListener(observed), CreateListener(self._desired)])
        self.assertEqual([type(a) for a in actions], [DeleteListener, CreateListener])


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s %(levelname)7s %(name)s %(message).5000s",
        )
    unittest.main()
