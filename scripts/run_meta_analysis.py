"""
Run the Full Bayesian Meta-Analysis

Loads an effect size table (or simulates one), fits the pooled normal and
hierarchical measurement-error models, checks convergence, and writes
summary tables and figures.

Usage:
    python scripts/run_meta_analysis.py [--data PATH] [--quick-test]

Options:
    --data PATH        CSV with columns study, outcome, rct, d, ci_lower, ci_upper
                       (simulated data is used when omitted)
    --output-dir DIR   Where tables and figures are written (default: results/)
    --quick-test       Fast run (2 chains, 500 samples)
    --seed N           Random seed (default: 42)
"""

import sys
import argparse
import json
from datetime import datetime
from pathlib import Path

import pandas as pd

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from metapool import MetaAnalysis, load_effect_sizes, prepare_effect_sizes
from metapool import simulate_effect_sizes


def main():
    """Main execution function."""
    parser = argparse.ArgumentParser(
        description="Fit pooled and hierarchical meta-analysis models"
    )
    parser.add_argument('--data', type=str, default=None,
                        help='Effect size CSV (simulated data if omitted)')
    parser.add_argument('--output-dir', type=str, default='results',
                        help='Output directory for tables and figures')
    parser.add_argument('--quick-test', action='store_true',
                        help='Quick test mode (2 chains, 500 samples)')
    parser.add_argument('--seed', type=int, default=42,
                        help='Random seed')
    args = parser.parse_args()

    print(f"{'=' * 80}")
    print("BAYESIAN META-ANALYSIS")
    print(f"{'=' * 80}")
    print(f"Mode: {'QUICK TEST' if args.quick_test else 'FULL RUN'}")
    print(f"Start time: {pd.Timestamp.now().strftime('%Y-%m-%d %H:%M:%S')}\n")

    start_time = datetime.now()

    output_dir = Path(args.output_dir)
    tables_dir = output_dir / "tables"
    figures_dir = output_dir / "figures"
    traces_dir = output_dir / "traces"
    for d in (tables_dir, figures_dir, traces_dir):
        d.mkdir(parents=True, exist_ok=True)

    print(f"{'=' * 80}")
    print("[Step 1/5] Loading effect sizes...")
    print(f"{'=' * 80}")

    try:
        if args.data is None:
            print("No --data given, simulating effect sizes")
            raw = simulate_effect_sizes(random_seed=args.seed)
            raw.to_csv(tables_dir / "simulated_effect_sizes.csv", index=False)
            data = prepare_effect_sizes(raw)
        else:
            data = load_effect_sizes(args.data)
    except (FileNotFoundError, ValueError) as e:
        print(f"✗ ERROR loading data: {e}")
        sys.exit(1)

    print(f"✓ {data}")
    print(data.summary(by='study').to_string(index=False))

    print(f"\n{'=' * 80}")
    print("[Step 2/5] Fitting models...")
    print(f"{'=' * 80}")

    analysis = MetaAnalysis(quick_mode=args.quick_test, random_seed=args.seed)

    try:
        analysis.fit(data, validate_convergence=True)
    except RuntimeError as e:
        print(f"\n✗ ERROR: {e}")
        sys.exit(1)

    analysis.pooled_model.save_trace(traces_dir / "pooled.nc")
    analysis.hierarchical_model.save_trace(traces_dir / "hierarchical.nc")

    print(f"\n{'=' * 80}")
    print("[Step 3/5] Summarizing posteriors...")
    print(f"{'=' * 80}")

    summary = analysis.summarize()

    pooled = summary['pooled_effect']
    overall = summary['overall_effect']
    baseline = summary['baseline_effect']
    design = summary['design_effect']
    fixed = summary['fixed_effect']

    print(f"\nPooled normal model:")
    print(f"  mu = {pooled['mean']:.3f} "
          f"[{pooled['hdi_lower']:.3f}, {pooled['hdi_upper']:.3f}]")
    print(f"\nHierarchical model:")
    print(f"  grand mean (design-averaged) = {overall['mean']:.3f} "
          f"[{overall['hdi_lower']:.3f}, {overall['hdi_upper']:.3f}]")
    print(f"  mu (design = 0) = {baseline['mean']:.3f} "
          f"[{baseline['hdi_lower']:.3f}, {baseline['hdi_upper']:.3f}]")
    print(f"  beta_design = {design['mean']:.3f} "
          f"[{design['hdi_lower']:.3f}, {design['hdi_upper']:.3f}], "
          f"P(> 0) = {design['prob_positive']:.2f}")
    print(f"\nHeterogeneity:")
    print(summary['heterogeneity'].to_string(index=False))
    print(f"\nClassical fixed-effect baseline:")
    print(f"  pooled mean = {fixed['pooled_mean']:.3f} "
          f"(SE {fixed['pooled_se']:.3f})")

    analysis.hierarchical_model.study_effects().to_csv(
        tables_dir / "study_effects.csv", index=False)
    analysis.hierarchical_model.outcome_effects().to_csv(
        tables_dir / "outcome_effects.csv", index=False)
    analysis.shrinkage().to_csv(tables_dir / "shrinkage.csv", index=False)
    summary['heterogeneity'].to_csv(tables_dir / "heterogeneity.csv", index=False)
    analysis.get_convergence_diagnostics().to_csv(
        tables_dir / "convergence.csv", index=False)

    with open(tables_dir / "summary.json", 'w') as f:
        json.dump({
            'pooled_effect': pooled,
            'overall_effect': overall,
            'baseline_effect': baseline,
            'design_effect': design,
            'fixed_effect': fixed,
            'ppc': summary['ppc'],
        }, f, indent=2)

    print(f"\n{'=' * 80}")
    print("[Step 4/5] Comparing models (PSIS-LOO)...")
    print(f"{'=' * 80}")

    comparison = analysis.compare()
    print(comparison.to_string())
    comparison.to_csv(tables_dir / "model_comparison.csv")

    print(f"\n{'=' * 80}")
    print("[Step 5/5] Generating figures...")
    print(f"{'=' * 80}")

    analysis.make_figures(figures_dir)

    elapsed = datetime.now() - start_time
    print(f"\n{'=' * 80}")
    print("✓ META-ANALYSIS COMPLETE")
    print(f"{'=' * 80}")
    print(f"Elapsed: {elapsed}")
    print(f"Outputs: {output_dir.resolve()}")


if __name__ == "__main__":
    main()
