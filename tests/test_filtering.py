"""Tests for pomp.filtering."""

import numpy as np
import pytest

from pomp import filtering
from pomp import models
from pomp import parameters as prm
from pomp import resampling as rs
from pomp import sde as sdes
from pomp import simulate
from pomp import tree as tr
from pomp.errors import NumericalDegeneracy, ShapeMismatch


class TestParticleFilter:

    def test_run(self, poisson_model, poisson_params, poisson_data):
        pf = filtering.ParticleFilter(model=poisson_model,
                                      params=poisson_params,
                                      data=poisson_data, N=200, rng=0)
        assert pf.status == 'initialized'
        ll = pf.run()
        assert np.isfinite(ll)
        assert ll == pf.ll < 0.
        assert pf.status == 'terminated'
        assert pf.cpu_time >= 0.
        assert pf.state.step == 99
        assert pf.X.value.shape == (200, 1)

    def test_step_by_step(self, poisson_model, poisson_params, poisson_data):
        pf = filtering.ParticleFilter(model=poisson_model,
                                      params=poisson_params,
                                      data=poisson_data[:3], N=100, rng=0)
        st = next(pf)
        assert isinstance(st, filtering.PfState)
        assert (st.step, st.t) == (0, 0.)
        assert 1 <= st.ess <= 100
        assert isinstance(st.ess, int)
        assert st.wgts.W.sum() == pytest.approx(1.)
        assert st.A.shape == (100,)
        assert pf.status == 'stepped'
        assert len(list(pf)) == 2
        assert pf.status == 'terminated'

    def test_reproducible(self, poisson_model, poisson_params, poisson_data):
        lls = [filtering.ll_filter(poisson_model, poisson_params,
                                   poisson_data, N=100, rng=5)
               for _ in range(2)]
        assert lls[0] == lls[1]

    @pytest.mark.parametrize('scheme', sorted(rs.rs_funcs.keys()))
    def test_resampling_schemes(self, scheme, poisson_model, poisson_params,
                                poisson_data):
        ll = filtering.ll_filter(poisson_model, poisson_params,
                                 poisson_data[:30], N=100,
                                 resampling=scheme, rng=1)
        assert np.isfinite(ll)

    def test_threads(self, poisson_model, poisson_params, poisson_data):
        pf = filtering.ParticleFilter(model=poisson_model,
                                      params=poisson_params,
                                      data=poisson_data[:20], N=101,
                                      n_jobs=3, rng=2)
        pf.run()
        assert np.isfinite(pf.ll)
        assert pf.X.value.shape == (101, 1)
        assert pf.state.eta.shape == (101,)

    def test_verbose(self, poisson_model, poisson_params, poisson_data,
                     capsys):
        pf = filtering.ParticleFilter(model=poisson_model,
                                      params=poisson_params,
                                      data=poisson_data[:2], N=10, rng=0,
                                      verbose=True)
        pf.run()
        out = capsys.readouterr().out.splitlines()
        assert len(out) == 2
        assert out[1].startswith('step=1: t=1')

    @pytest.mark.parametrize('opts', [{'N': 0}, {'N': 2.5},
                                      {'resampling': 'foo'},
                                      {'interval': 1.5}])
    def test_invalid_options(self, opts, poisson_model, poisson_params,
                             poisson_data):
        with pytest.raises(ValueError):
            filtering.ParticleFilter(model=poisson_model,
                                     params=poisson_params,
                                     data=poisson_data, **opts)

    def test_parameters_of_the_wrong_shape(self, poisson_model,
                                           poisson_params, poisson_data):
        params = tr.branch(poisson_params, poisson_params)
        with pytest.raises(ShapeMismatch):
            filtering.ParticleFilter(model=poisson_model, params=params,
                                     data=poisson_data)

    def test_degenerate_weights(self, poisson_model, poisson_params,
                                poisson_data):
        data = poisson_data[:5] + [simulate.Data(5., -1)]
        pf = filtering.ParticleFilter(model=poisson_model,
                                      params=poisson_params, data=data,
                                      N=50, rng=0)
        with pytest.raises(NumericalDegeneracy) as e:
            pf.run()
        assert (e.value.step, e.value.t) == (5, 5.)

    def test_time_order(self, poisson_model, poisson_params, poisson_data):
        data = [poisson_data[3], poisson_data[1]]
        with pytest.raises(ValueError):
            filtering.ll_filter(poisson_model, poisson_params, data, N=10)

    def test_variance_decreases_with_n(self, poisson_model, poisson_params,
                                       poisson_data):
        var = {}
        for N in [100, 1000]:
            ll = filtering.log_likelihood(poisson_model, poisson_data, N=N,
                                          rng=N)
            var[N] = np.var([ll(poisson_params) for _ in range(20)])
        assert var[1000] < var[100]


class TestOutputs:

    def test_filter_with_intervals(self, seasonal_model, seasonal_params):
        data = simulate.simulate_times(seasonal_model, seasonal_params,
                                       np.arange(50.), rng=3)
        out = filtering.filter_with_intervals(seasonal_model, seasonal_params,
                                              data, N=300, rng=4)
        assert len(out) == 50
        assert [o.t for o in out] == [d.t for d in data]
        assert len(out[0].state_intervals) == 2
        assert len(out[0].row()) == 5 + 2 + 4 + 2
        assert all(o.eta_interval.lower <= o.eta_interval.upper for o in out)
        assert np.isfinite(out[-1].log_likelihood)

    def test_online_filter(self, poisson_model, poisson_params,
                           poisson_data):
        def observations():
            for d in poisson_data:
                yield simulate.Data(d.t, d.observation)

        gen = filtering.online_filter(poisson_model, poisson_params,
                                      observations(), N=100, rng=0)
        first = [next(gen) for _ in range(10)]
        gen.close()
        assert [o.t for o in first] == list(np.arange(10.))
        assert all(o.observation is not None for o in first)
        lls = [o.log_likelihood for o in first]
        assert all(np.isfinite(lls))

    def test_online_filter_matches_offline(self, poisson_model,
                                           poisson_params, poisson_data):
        online = list(filtering.online_filter(poisson_model, poisson_params,
                                              poisson_data[:20], N=50,
                                              rng=7))
        offline = filtering.filter_with_intervals(poisson_model,
                                                  poisson_params,
                                                  poisson_data[:20], N=50,
                                                  rng=7)
        assert online[-1].log_likelihood == offline[-1].log_likelihood

    def test_lgcp_filter(self):
        mod = models.LogGaussianCox(sdes.ornstein_uhlenbeck)
        params = prm.leaf_parameter(sde=prm.OuParameter(
            m0=1., c0=np.log(0.01), alpha=np.log(0.5), sigma=np.log(0.2),
            theta=1.))
        data = simulate.simulate_lgcp(mod, params, 0., 5., precision=2, rng=1)
        pf = filtering.LgcpFilter(model=mod, params=params, data=data,
                                  N=100, precision=2, t0=0., rng=2)
        pf.run()
        assert np.isfinite(pf.ll)
        assert pf.state.eta.shape == (100, 2)
        assert np.all(pf.state.eta[:, 1] > 0.)
        out = pf.output()
        assert out.eta_interval.lower <= out.eta_interval.upper

    def test_multi_filter(self, poisson_model, poisson_params, poisson_data):
        results = filtering.multi_filter(model=poisson_model,
                                         params=poisson_params,
                                         data=poisson_data[:20],
                                         N=[50, 100], nruns=3, nprocs=1,
                                         out_func=lambda pf: pf.ll, rng=0)
        assert len(results) == 6
        assert sorted(r['N'] for r in results) == [50] * 3 + [100] * 3
        assert len(set(r['seed'] for r in results)) == 6
        assert all(np.isfinite(r['output']) for r in results)


def test_end_to_end_poisson_ou():
    mod = models.Poisson(sdes.ornstein_uhlenbeck)
    params = prm.leaf_parameter(sde=prm.OuParameter(
        m0=1., c0=np.log(0.01), alpha=np.log(0.1), sigma=np.log(0.1),
        theta=0.))
    data = simulate.simulate_times(mod, params, np.arange(500.), rng=10)
    ll = filtering.log_likelihood(mod, data, N=500,
                                  resampling='systematic', rng=11)
    lls = np.array([ll(params) for _ in range(50)])
    assert np.all(np.isfinite(lls))
    # one-sided bound: with a slowly varying latent state and N=500 the
    # variance is well below 1 (about 0.05); only a blow-up is flagged
    assert np.var(lls) < 4.
    out = filtering.filter_with_intervals(mod, params, data, N=500, rng=12)
    inside = [ci.lower <= m <= ci.upper
              for o in out
              for m, ci in zip(tr.flatten(o.state), o.state_intervals)]
    assert np.mean(inside) >= 0.9
