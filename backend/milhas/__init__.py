"""
milhas - 里程交易后台的佣金与利润分配引擎
"""
__version__ = "0.1.0"
