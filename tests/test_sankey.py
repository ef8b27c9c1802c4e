from skills.job_kpi.kpi import FunnelFlows
from skills.job_kpi.sankey import funnel_flow_list, render_funnel_sankey


def _flows() -> FunnelFlows:
    return FunnelFlows(
        appointments=10,
        contingencies=4,
        contracts=6,
        installs=5,
        appt_to_contingency=4,
        appt_to_contract=3,
        contingency_to_contract=3,
        lost_after_appt=3,
        lost_after_contingency=1,
        lost_after_contract=1,
    )


def test_funnel_flow_list_drops_empty_edges():
    flows = _flows()
    flows.lost_after_contract = 0

    edges = {(src, dst): val for src, dst, val, _ in funnel_flow_list(flows)}

    assert edges[("appointments", "contingencies")] == 4
    assert edges[("contracts", "installs")] == 5
    assert ("contracts", "lost_contract") not in edges


def test_render_funnel_sankey_writes_png(tmp_path):
    path = render_funnel_sankey(_flows(), "Funnel", str(tmp_path / "charts" / "sankey.png"))

    assert path.endswith("sankey.png")
    assert (tmp_path / "charts" / "sankey.png").read_bytes()[:4] == b"\x89PNG"
