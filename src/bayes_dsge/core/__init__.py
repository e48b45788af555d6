"""モデル定義と均衡解法"""
