import unittest
import numpy as np

from bandscope import backends, directional, packets
from bandscope.exceptions import UnsupportedTransformError
from bandscope.states import Size


class TestBackends(unittest.TestCase):

    def setUp(self):
        np.random.seed(42)

        self.image_square = (np.random.random((32, 32)) * 255).astype(np.uint8)
        self.image_odd = (np.random.random((37, 53)) * 255).astype(np.uint8)
        self.image_wide = (np.random.random((30, 50)) * 255).astype(np.uint8)
        self.image_color = (np.random.random((24, 30, 3)) * 255).astype(np.uint8)

        self.tol = 1e-6

    def _assert_allclose(self, a, b, msg=None):
        self.assertTrue(np.allclose(a, b, rtol=self.tol, atol=self.tol), msg)

    def test_lookup(self):
        for tag in ['DFT', 'DCT', 'DWT', 'WPT', 'DT-CWT']:
            self.assertEqual(backends.get_transform_backend(tag).id, tag)
        with self.assertRaises(UnsupportedTransformError) as ctx:
            backends.get_transform_backend('Z-TRANSFORM')
        self.assertEqual(ctx.exception.transform_type, 'Z-TRANSFORM')

    def test_unfiltered_roundtrip(self):
        cases = [
            (backends.DFTBackend, {}),
            (backends.DCTBackend, {}),
            (backends.DWTBackend, {'wavelet': 'haar', 'level': 2}),
            (backends.DWTBackend, {'wavelet': 'db2', 'level': 3}),
            (backends.WPTBackend, {'wavelet': 'db2', 'level': 2}),
            (backends.DTCWTBackend, {}),
        ]
        for backend, options in cases:
            for image in [self.image_odd, self.image_wide]:
                state = backend.forward(image, options)
                self._assert_allclose(backend.reconstruct(state), image.astype(np.float64),
                                      f"{backend.id} {options} roundtrip failed for {image.shape}")

    def test_inverse_is_display_range(self):
        for backend in backends.BACKENDS.values():
            image = backend.inverse(backend.forward(self.image_odd))
            self.assertEqual(image.dtype, np.uint8, backend.id)
            self.assertEqual(image.shape, self.image_odd.shape, backend.id)
            self.assertEqual(image.max(), 255, backend.id)

    def test_color_sources_are_grayscaled(self):
        state = backends.DCTBackend.forward(self.image_color)
        self.assertEqual(state.meta['original_size'], Size(30, 24))
        gray = self.image_color.astype(np.float64) @ np.array([0.299, 0.587, 0.114])
        self._assert_allclose(backends.DCTBackend.reconstruct(state), gray)

    def test_inactive_filter_returns_same_state(self):
        for backend in backends.BACKENDS.values():
            state = backend.forward(self.image_square)
            self.assertIs(backend.apply_filter(state, None), state, backend.id)
            self.assertIs(backend.apply_filter(state, {'mode': 'none', 'radius': 0.1}), state, backend.id)

    def test_full_lowpass_keeps_ratios(self):
        for backend in [backends.DFTBackend, backends.DCTBackend]:
            state = backend.forward(self.image_odd)
            filtered = backend.apply_filter(state, {'mode': 'lowpass', 'radius': 1.0})
            before = backend.compute_metrics(state).ratios()
            after = backend.compute_metrics(filtered).ratios()
            for label in before:
                self.assertAlmostEqual(before[label], after[label], places=9, msg=f"{backend.id} {label}")

    def test_filters_do_not_mutate_input(self):
        state = backends.DFTBackend.forward(self.image_square)
        original = state.spectrum.copy()
        backends.DFTBackend.apply_filter(state, {'mode': 'highpass', 'radius': 0.5})
        self.assertTrue(np.array_equal(state.spectrum, original))

    # ===== DFT =====

    def test_dft_padding(self):
        state = backends.DFTBackend.forward(self.image_odd)
        self.assertEqual(state.meta['original_size'], Size(53, 37))
        self.assertEqual(state.meta['padded_size'], Size(54, 40))
        self.assertEqual(state.spectrum.shape, (40, 54))

    def test_dft_highpass_removes_mean(self):
        state = backends.DFTBackend.forward(np.full((32, 32), 100.0))
        filtered = backends.DFTBackend.apply_filter(state, {'mode': 'highpass', 'radius': 0.1})
        self.assertTrue(np.allclose(backends.DFTBackend.reconstruct(filtered), 0.0, atol=1e-6))

    def test_dft_display(self):
        state = backends.DFTBackend.forward(self.image_square)
        rendering = backends.DFTBackend.get_display(state)
        self.assertEqual(rendering.display.dtype, np.uint8)
        self.assertEqual(rendering.display.shape, (32, 32))
        self.assertIsNone(rendering.mask_display)

        filtered = backends.DFTBackend.apply_filter(state, {'mode': 'lowpass', 'shape': 'gaussian', 'radius': 0.2})
        rendering = backends.DFTBackend.get_display(filtered)
        self.assertEqual(rendering.mask_display.dtype, np.uint8)
        self.assertEqual(rendering.mask_display[16, 16], 255)

    # ===== DCT =====

    def test_dct_lowpass_concentrates_energy(self):
        state = backends.DCTBackend.forward(self.image_square)
        filtered = backends.DCTBackend.apply_filter(state, {'mode': 'lowpass', 'radius': 0.05})
        self.assertIsNotNone(filtered.mask)
        self.assertGreater(backends.DCTBackend.compute_metrics(filtered).band('0-0.3').ratio, 99.0)

    def test_dct_ignores_wavelet_modes(self):
        state = backends.DCTBackend.forward(self.image_square)
        self.assertIs(backends.DCTBackend.apply_filter(state, {'mode': 'll-only'}), state)

    # ===== DWT =====

    def test_dwt_layout(self):
        state = backends.DWTBackend.forward(self.image_wide, {'level': 2})
        self.assertEqual(state.meta['level_count'], 2)
        self.assertEqual(state.meta['padded_size'], Size(52, 32))
        self.assertEqual(state.meta['wavelet'], 'haar')
        self.assertEqual(state.coefficients.shape, (32, 52))

    def test_dwt_level_clamp(self):
        state = backends.DWTBackend.forward(np.ones((6, 40)), {'level': 9})
        self.assertEqual(state.meta['level_count'], 2)
        self.assertEqual(state.meta['padded_size'], Size(40, 8))

    def test_dwt_metrics(self):
        state = backends.DWTBackend.forward(self.image_wide, {'level': 2})
        metrics = backends.DWTBackend.compute_metrics(state)
        self.assertEqual([b.label for b in metrics.bands], ['LL2', 'HL2', 'LH2', 'HH2', 'HL1', 'LH1', 'HH1'])
        self.assertAlmostEqual(sum(metrics.ratios().values()), 100.0)
        energy = np.sum(self.image_wide.astype(np.float64) ** 2)
        self.assertAlmostEqual(metrics.total_energy / energy, 1.0, places=9)
        self.assertEqual(sorted(metrics.details['detail_level_ratios']), [1, 2])

    def test_dwt_ll_only(self):
        state = backends.DWTBackend.forward(self.image_square, {'level': 2})
        filtered = backends.DWTBackend.apply_filter(state, {'mode': 'll-only'})
        metrics = backends.DWTBackend.compute_metrics(filtered)
        self.assertAlmostEqual(metrics.band('LL2').ratio, 100.0)
        self.assertEqual(np.count_nonzero(filtered.coefficients[8:, :]), 0)

    def test_dwt_suppress_high(self):
        state = backends.DWTBackend.forward(self.image_square, {'level': 2})
        filtered = backends.DWTBackend.apply_filter(state, {'mode': 'suppress-high', 'detailGain': 0.0})
        coeffs = filtered.coefficients
        self.assertEqual(np.count_nonzero(coeffs[16:, :]), 0)
        self.assertEqual(np.count_nonzero(coeffs[:16, 16:]), 0)
        self.assertTrue(np.array_equal(coeffs[:16, :16], state.coefficients[:16, :16]))

        halved = backends.DWTBackend.apply_filter(state, {'mode': 'suppress-high', 'detail_gain': 0.5})
        self._assert_allclose(halved.coefficients[16:, 16:], state.coefficients[16:, 16:] * 0.5)

    def test_dwt_threshold(self):
        state = backends.DWTBackend.forward(self.image_square, {'level': 1})
        filtered = backends.DWTBackend.apply_filter(state, {'mode': 'threshold', 'threshold': 1e9})
        self.assertTrue(np.array_equal(filtered.coefficients[:16, :16], state.coefficients[:16, :16]))
        self.assertEqual(np.count_nonzero(filtered.coefficients[16:, :]), 0)

    # ===== WPT =====

    def test_wpt_tree_is_complete(self):
        state = backends.WPTBackend.forward(self.image_square, {'level': 2})
        nodes = state.nodes
        self.assertEqual(len(nodes), 1 + 4 + 16)
        self.assertEqual([n.path for n in nodes[1:5]], ['LL', 'LH', 'HL', 'HH'])

        by_path = {n.path: n for n in nodes}
        for node in nodes:
            if node.is_leaf:
                self.assertEqual(node.level, 2)
                self.assertEqual((node.height, node.width), (8, 8))
            else:
                for label in packets.LABELS:
                    self.assertIn(packets.child_path(node.path, label), by_path)
        self.assertEqual(by_path['LL/HH'].parent_path, 'LL')
        self.assertEqual(by_path['LL'].parent_path, '')

    def test_wpt_energy_consistency(self):
        state = backends.WPTBackend.forward(self.image_square, {'wavelet': 'db2', 'level': 2})
        leaves = [n for n in state.nodes if n.is_leaf]
        leaf_total = sum(n.energy for n in leaves)
        self.assertAlmostEqual(leaf_total / state.meta['total_energy'], 1.0, places=9)

        metrics = backends.WPTBackend.compute_metrics(state)
        node_energies = metrics.details['node_energies']
        under_ll = sum(n.energy for n in leaves if n.path.startswith('LL/'))
        self.assertAlmostEqual(node_energies['LL'], under_ll)
        self.assertAlmostEqual(node_energies[''], leaf_total)
        self.assertEqual([b.label for b in metrics.bands], ['LL', 'LH', 'HL', 'HH'])
        self.assertAlmostEqual(metrics.details['level_ratios'][2], 100.0)

    def test_wpt_padding(self):
        state = backends.WPTBackend.forward(np.ones((12, 20)), {'level': 3})
        self.assertEqual(state.meta['level_count'], 3)
        self.assertEqual(state.meta['padded_size'], Size(24, 16))
        leaves = [n for n in state.nodes if n.is_leaf]
        self.assertEqual(len(leaves), 64)
        self.assertEqual((leaves[0].height, leaves[0].width), (2, 3))

        display = backends.WPTBackend.get_display(state).display
        self.assertEqual(display.shape, (16, 24))

    def test_wpt_selection(self):
        state = backends.WPTBackend.forward(self.image_square, {'level': 2})
        filtered = backends.WPTBackend.apply_filter(state, {'mode': 'threshold', 'selectedNodes': ['LL']})
        self.assertIs(filtered.nodes[0], state.nodes[0])
        metrics = backends.WPTBackend.compute_metrics(filtered)
        self.assertAlmostEqual(metrics.band('LL').ratio, 100.0)
        self.assertEqual(metrics.band('HH').energy, 0.0)

        single = backends.WPTBackend.apply_filter(state, {'mode': 'threshold', 'selectedNodes': ['LL/HH']})
        kept = [n.path for n in single.nodes if n.is_leaf and n.energy > 0]
        self.assertEqual(kept, ['LL/HH'])

        # a bare string names one node
        bare = backends.WPTBackend.apply_filter(state, {'mode': 'threshold', 'selectedNodes': 'LL/HH'})
        kept = [n.path for n in bare.nodes if n.is_leaf and n.energy > 0]
        self.assertEqual(kept, ['LL/HH'])

    def test_wpt_shrinkage(self):
        state = backends.WPTBackend.forward(self.image_square, {'level': 1})
        filtered = backends.WPTBackend.apply_filter(state, {'mode': 'threshold', 'thresholdMode': 'soft', 'lambda': 20})
        for before, after in zip(state.nodes[1:], filtered.nodes[1:]):
            self.assertLessEqual(after.energy, before.energy)
        self.assertLess(filtered.nodes[4].energy, state.nodes[4].energy)

    # ===== DT-CWT =====

    def test_directional_kernels_sum_to_identity(self):
        total = sum(directional.KERNELS.values())
        expected = np.zeros((3, 3))
        expected[1, 1] = 1.0
        self.assertTrue(np.allclose(total, expected, atol=1e-10))

    def test_directional_state(self):
        state = backends.DTCWTBackend.forward(self.image_wide)
        self.assertEqual([d.id for d in state.directions], ['d0', 'd30', 'd60', 'd90', 'd120', 'd150'])
        self.assertEqual(state.directions[3].label, '90°')
        self.assertEqual(state.meta['sigma'], 1.5)

        display = backends.DTCWTBackend.get_display(state).display
        self.assertEqual(display.shape, (60, 150))
        self.assertEqual(display.dtype, np.uint8)

    def test_directional_selection(self):
        state = backends.DTCWTBackend.forward(self.image_wide)
        filtered = backends.DTCWTBackend.apply_filter(state, {'mode': 'threshold', 'selectedDirections': ['d0']})
        self.assertIs(filtered.lowpass, state.lowpass)
        for direction in filtered.directions[1:]:
            self.assertEqual(np.count_nonzero(direction.data), 0)

        metrics = backends.DTCWTBackend.compute_metrics(filtered)
        self.assertAlmostEqual(metrics.band('d0').ratio, 100.0)
        self.assertGreater(metrics.details['lowpass_ratio'], 0.0)
        self.assertLess(metrics.details['lowpass_ratio'], 100.0)

    def test_directional_sigma_option(self):
        sharp = backends.DTCWTBackend.forward(self.image_wide, {'sigma': 0.5})
        smooth = backends.DTCWTBackend.forward(self.image_wide, {'sigma': 3.0})
        sharp_energy = backends.DTCWTBackend.compute_metrics(sharp).total_energy
        smooth_energy = backends.DTCWTBackend.compute_metrics(smooth).total_energy
        self.assertLess(sharp_energy, smooth_energy)

    # ===== dispose =====

    def test_dispose(self):
        for backend in backends.BACKENDS.values():
            state = backend.forward(self.image_square)
            backend.dispose(state)
            self.assertTrue(state.disposed, backend.id)
            backend.dispose(state)
        backends.DWTBackend.dispose(None)


if __name__ == '__main__':
    unittest.main()
