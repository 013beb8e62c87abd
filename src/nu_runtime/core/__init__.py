"""执行核心：缓冲、drain、工作目录协议、job 注册表、supervisor 与 executor。"""
