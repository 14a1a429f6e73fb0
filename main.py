"""
main.py
จุดเริ่มรันโปรเจกต์ binvault: จำลอง Vault + Strategy แบบรายวันจาก config.yaml

- โหลด config.yaml (PyYAML) และ .env (python-dotenv)
- (ไม่บังคับ) อ่านราคาอ้างอิงจาก Chainlink Aggregator ผ่าน SafeWeb3
- รัน SimulationEngine แล้วพิมพ์รายงานและบันทึกผลเป็น CSV
"""

import os

from dotenv import load_dotenv

from binvault.engine.simulation_engine import SimulationConfig, SimulationEngine
from binvault.oracle.oracle import ChainlinkPriceFeed
from binvault.utils.SafeWeb3 import SafeWeb3
from binvault.vault.config import load_config


def build_simulation_config(cfg: dict) -> SimulationConfig:
    market = cfg.get('market', {})
    vault = cfg.get('vault', {})
    strategy = cfg.get('strategy', {})
    users = cfg.get('users', {})

    seed_val = market.get('seed')
    seed_val = int(seed_val) if seed_val not in ['null', None, 'None', ''] else None

    return SimulationConfig(
        days=int(market.get('days_to_run', 30)),
        seed=seed_val,
        bin_step=int(market.get('bin_step', 25)),
        daily_bin_volatility=float(market.get('daily_bin_volatility', 6.0)),
        daily_fee_bps=float(market.get('daily_fee_bps', 5.0)),
        vault_type=str(vault.get('type', 'simple')),
        aum_annual_fee_bps=int(vault.get('aum_annual_fee_bps', 200)),
        range_half_width=int(strategy.get('range_half_width', 5)),
        slippage_bins=int(strategy.get('slippage_bins', 2)),
        liquidity_per_bin=float(strategy.get('liquidity_per_bin', 40.0)),
        depositors=int(users.get('depositors', 3)),
        deposit_x=float(users.get('deposit_x', 100.0)),
        deposit_y=float(users.get('deposit_y', 100.0)),
        withdraw_every_days=int(users.get('withdraw_every_days', 7)),
        withdraw_fraction_bps=int(users.get('withdraw_fraction_bps', 2500)),
    )


def print_reference_price(cfg: dict) -> None:
    """อ่านราคาจาก Aggregator จริง (เปิดใช้ใน config และต้องมี RPC_URLS ใน .env)"""
    oracle_cfg = cfg.get('oracle', {})
    if not oracle_cfg.get('enabled', False):
        return

    rpc_urls = [url.strip() for url in os.getenv('RPC_URLS', '').split(',') if url.strip()]
    if not rpc_urls:
        print("⚠️ oracle.enabled แต่ไม่พบ RPC_URLS ใน .env ข้ามการอ่านราคาอ้างอิง")
        return

    try:
        feed = ChainlinkPriceFeed(SafeWeb3(rpc_urls), oracle_cfg['feed_address'])
        _, answer, _, updated_at, _ = feed.latest_round_data()
        print(f"[*] Reference price: {answer / 10 ** feed.decimals():,.4f} (updated at {updated_at})")
    except Exception as e:
        print(f"⚠️ อ่านราคาอ้างอิงไม่สำเร็จ: {e}")


def run_simulation_from_config():
    load_dotenv()
    try:
        cfg = load_config(os.getenv('BINVAULT_CONFIG', 'config.yaml'))
    except Exception as e:
        print(e)
        return

    print("=" * 65)
    print("🏦 BINVAULT: Vault + Bin Strategy Simulator")
    print("=" * 65)

    print_reference_price(cfg)

    sim_cfg = build_simulation_config(cfg)
    engine = SimulationEngine(sim_cfg)
    print(f"[*] {sim_cfg.vault_type.upper()} vault, {sim_cfg.depositors} depositors, {sim_cfg.days} days. Starting Simulation...")

    results = engine.run()

    first = results.iloc[0]
    last = results.iloc[-1]
    share_growth = (last['share_price_y'] / first['share_price_y'] - 1) * 100 if first['share_price_y'] else 0.0
    rounds = engine.vault.rounds_frame()

    print("\n" + "=" * 65)
    print(f"📊 VAULT REPORT ({sim_cfg.days} Days)")
    print("=" * 65)
    print(f"Final TVL (in Y)      : {last['tvl_y']:,.4f}")
    print(f"Share Price (in Y)    : {first['share_price_y']:,.6f} -> {last['share_price_y']:,.6f} ({share_growth:+.2f}%)")
    print(f"Total Share Supply    : {last['total_supply']:,}")
    print(f"Final Range           : [{last['range_lower']}, {last['range_upper']}] (active {last['active_id']})")
    print("-" * 65)
    print(f"Rebalances            : {engine.rebalance_count} Times")
    print(f"Queued Withdrawals    : {engine.queued_count} Times")
    print(f"Settled Rounds        : {int(rounds['settled'].sum())}")
    print(f"Redeemed              : X {last['redeemed_x']:,.4f} | Y {last['redeemed_y']:,.4f}")
    print(f"AUM Fees Paid         : X {last['fees_paid_x']:,.6f} | Y {last['fees_paid_y']:,.6f}")
    print("=" * 65)

    output_dir = cfg.get('output', {}).get('dir', 'results')
    os.makedirs(output_dir, exist_ok=True)
    results_file = os.path.join(output_dir, 'simulation_results.csv')
    rounds_file = os.path.join(output_dir, 'rounds.csv')
    results.to_csv(results_file, index=False)
    rounds.to_csv(rounds_file, index=False)
    print(f"\n✅ Saved: {results_file}, {rounds_file}")


if __name__ == "__main__":
    run_simulation_from_config()
